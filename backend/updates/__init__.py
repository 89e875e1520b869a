"""
Updates Module

Detection of image updates for watched containers.

Architecture:
- tags: lenient semver parsing, comparison and tag transforms
- RegistryClient: Docker Registry v2 / OCI tag listing and manifest resolution
- tag_candidates: ranking of remote tags a container could move to
- update_classifier: pure update_kind / update_available computation
- UpdateChecker: watch cycle writing container results and emitting reports
"""

from updates.registry_client import (
    RegistryClient,
    RegistryError,
    NoManifestFoundError,
    RegistryRequestError,
    ManifestDescriptor,
    BasicAuthenticator,
)
from updates.update_checker import UpdateChecker

__all__ = [
    'RegistryClient',
    'RegistryError',
    'NoManifestFoundError',
    'RegistryRequestError',
    'ManifestDescriptor',
    'BasicAuthenticator',
    'UpdateChecker',
]
