"""Security scanners: infrastructure, API, OWASP compliance and licenses."""

from .api import ApiSecurityTester
from .infrastructure import InfrastructureScanner, discover_files, scan_file
from .licenses import LicenseChecker, classify_license, normalize_license
from .owasp import OwaspComplianceTester, is_ssrf_blocked

__all__ = [
    "ApiSecurityTester",
    "InfrastructureScanner",
    "LicenseChecker",
    "OwaspComplianceTester",
    "classify_license",
    "discover_files",
    "is_ssrf_blocked",
    "normalize_license",
    "scan_file",
]
