"""
Pytest plugin entry point for icapscan.
"""

from pytest_icapscan import (
    fake_icap_socket,
    icap_response_builder,
    icap_response_clean,
    icap_response_continue,
    icap_response_options,
    icap_response_virus,
    pytest_configure,
    sample_clean_content,
    sample_file,
    scripted_icap_client,
)

__all__ = [
    "pytest_configure",
    "fake_icap_socket",
    "icap_response_builder",
    "icap_response_clean",
    "icap_response_continue",
    "icap_response_options",
    "icap_response_virus",
    "sample_clean_content",
    "sample_file",
    "scripted_icap_client",
]
