from importlib.metadata import PackageNotFoundError, version
import logging
import os
import platform
from typing import Dict


LOG = logging.getLogger(__name__)

SDK_NAME = "tracebeam-python"
SDK_VARIANT = "tracebeam"


def get_version() -> str:
    """
    Get the version of the tracebeam package.

    Falls back to the bundled VERSION file when the distribution metadata
    is not available (e.g. running from a source checkout).

    Returns:
      str: The tracebeam version.
    """
    try:
        return version("tracebeam")
    except PackageNotFoundError:
        LOG.debug("Distribution metadata not found, reading VERSION file.")

    root = os.path.dirname(os.path.abspath(__file__))
    with open(os.path.join(root, "VERSION")) as version_file:
        return version_file.read().strip()


def get_user_agent() -> str:
    """
    Get the user agent string for HTTP requests.

    Returns:
      str: The user agent string in the format: tracebeam-python/{version} ({os} {arch}; Python/{python_version})
    """
    os_name = platform.system()

    machine = platform.machine()
    if machine in ("x86_64", "AMD64"):
        arch = "x86_64"
    elif machine in ("arm64", "aarch64"):
        arch = "arm_64"
    elif machine == "i386":
        arch = "x86"
    else:
        arch = machine or "unknown"

    python_version = platform.python_version()

    return f"{SDK_NAME}/{get_version()} ({os_name} {arch}; Python/{python_version})"


def get_meta_http_headers(public_key: str) -> Dict[str, str]:
    """
    Get the SDK metadata headers sent with every ingestion request.

    Args:
      public_key (str): The project public key.

    Returns:
      Dict[str, str]: The metadata headers.
    """
    return {
        "X-Tracebeam-Sdk-Name": SDK_NAME,
        "X-Tracebeam-Sdk-Version": get_version(),
        "X-Tracebeam-Sdk-Variant": SDK_VARIANT,
        "X-Tracebeam-Public-Key": public_key,
        "User-Agent": get_user_agent(),
    }
