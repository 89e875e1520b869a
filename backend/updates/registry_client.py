"""
Registry Client for Docker Image Update Detection

Lists tags and resolves manifests against Docker Registry v2 / OCI
distribution APIs. Speaks both manifest generations:
- schema 1 (legacy): digest and created date come from the v1Compatibility history
- schema 2 / OCI: manifest lists are narrowed to the image's platform, then the
  platform manifest digest is read from the Docker-Content-Digest header

No retries happen here; a failed resolution raises and the caller decides
when to try again (normally at the next watch cycle).
"""

import aiohttp
import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from config.settings import AppConfig
from models.container_models import ContainerImage

logger = logging.getLogger(__name__)

MEDIA_TYPE_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_IMAGE_CONFIG_V1 = "application/vnd.docker.container.image.v1+json"
MEDIA_TYPE_OCI_CONFIG = "application/vnd.oci.image.config.v1+json"

MANIFEST_LIST_MEDIA_TYPES = (MEDIA_TYPE_MANIFEST_LIST, MEDIA_TYPE_OCI_INDEX)
SINGLE_MANIFEST_MEDIA_TYPES = (MEDIA_TYPE_MANIFEST_V2, MEDIA_TYPE_OCI_MANIFEST)
IMAGE_CONFIG_MEDIA_TYPES = (MEDIA_TYPE_IMAGE_CONFIG_V1, MEDIA_TYPE_OCI_CONFIG)

# Order matters: multi-platform documents are preferred
MANIFEST_ACCEPT_HEADER = ", ".join(MANIFEST_LIST_MEDIA_TYPES + SINGLE_MANIFEST_MEDIA_TYPES)


class RegistryError(Exception):
    """Base error for registry access"""


class NoManifestFoundError(RegistryError):
    """Manifest response was empty, unrecognized, or had no matching platform"""

    def __init__(self, message: str = "Unexpected error; no manifest found"):
        super().__init__(message)


class RegistryRequestError(RegistryError):
    """Registry answered with a non-success status"""

    def __init__(self, status: int, url: str, message: str = ""):
        self.status = status
        self.url = url
        super().__init__(f"Registry returned {status} for {url}{': ' + message if message else ''}")


@dataclass
class ManifestDescriptor:
    """Result of a manifest resolution"""
    digest: Optional[str]
    version: int
    created: Optional[str] = None


@dataclass
class RegistryResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    data: Any = None

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup"""
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


class Authenticator(Protocol):
    """Decorates request options (headers...) before they are sent"""

    async def authenticate(self, image: ContainerImage, request_options: Dict[str, Any]) -> Dict[str, Any]:
        ...


class AnonymousAuthenticator:
    async def authenticate(self, image: ContainerImage, request_options: Dict[str, Any]) -> Dict[str, Any]:
        return request_options


class BasicAuthenticator:
    """Adds a Basic Authorization header built from username/password"""

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    @staticmethod
    def encode(username: str, password: str) -> str:
        credentials = f"{username}:{password}"
        return base64.b64encode(credentials.encode('utf-8')).decode()

    async def authenticate(self, image: ContainerImage, request_options: Dict[str, Any]) -> Dict[str, Any]:
        headers = dict(request_options.get("headers") or {})
        headers["Authorization"] = f"Basic {self.encode(self.username, self.password)}"
        return {**request_options, "headers": headers}


class RegistryClient:
    """
    Client for one image registry.

    Subclasses for specific registries override match(), normalize_image()
    or pass their own authenticator; the manifest protocol is shared.
    """

    def __init__(
        self,
        name: str = "custom",
        authenticator: Optional[Authenticator] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
    ):
        self.name = name
        self.authenticator = authenticator or AnonymousAuthenticator()
        self.timeout = timeout if timeout is not None else AppConfig.REGISTRY_TIMEOUT
        self.page_size = page_size if page_size is not None else AppConfig.TAGS_PAGE_SIZE

    def match(self, image: ContainerImage) -> bool:
        """Whether this registry is responsible for the image"""
        return False

    def normalize_image(self, image: ContainerImage) -> ContainerImage:
        return image

    # ==================== HTTP ====================

    async def call_registry(
        self,
        image: ContainerImage,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
    ) -> RegistryResponse:
        """
        Issue one authenticated request and return status, headers and JSON body.

        Raises:
            RegistryRequestError: on non-2xx responses
        """
        request_options = {
            "url": url,
            "method": method,
            "headers": dict(headers) if headers else {"Accept": "application/json"},
        }
        request_options = await self.authenticator.authenticate(image, request_options)

        logger.debug(f"{self.name} - {request_options['method']} {request_options['url']}")

        async with aiohttp.ClientSession() as session:
            async with session.request(
                request_options["method"],
                request_options["url"],
                headers=request_options["headers"],
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status >= 400:
                    response_text = await response.text()
                    raise RegistryRequestError(response.status, url, response_text[:200])

                data = None
                if method.upper() != "HEAD":
                    body = await response.text()
                    if body:
                        try:
                            data = json.loads(body)
                        except ValueError:
                            logger.warning(f"Non-JSON response from {url}")

                return RegistryResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    data=data,
                )

    # ==================== Tags ====================

    def _get_tags_page_url(self, image: ContainerImage, last_item: Optional[str]) -> str:
        last = f"&last={last_item}" if last_item else ""
        return f"{image.registry.url}/{image.name}/tags/list?n={self.page_size}{last}"

    async def get_tags_page(self, image: ContainerImage, last_item: Optional[str] = None) -> RegistryResponse:
        return await self.call_registry(image, self._get_tags_page_url(image, last_item))

    async def list_tags(self, image: ContainerImage) -> List[str]:
        """
        List every tag of the image, highest first.

        Pages are fetched sequentially: the last tag of a page seeds the next
        request, and paging continues while the registry sends a Link header.
        The final list is sorted ascending then reversed so ordering does not
        depend on the registry.
        """
        logger.debug(f"Get {image.name} tags")
        all_tags: List[str] = []
        last_item: Optional[str] = None

        while True:
            page = await self.get_tags_page(image, last_item)
            page_tags = self._extract_page_tags(page)
            all_tags.extend(page_tags)

            if page.header("link") is None:
                break
            if not page_tags:
                # Nothing to seed the next page with; asking again would loop
                logger.warning(f"Empty tags page with pagination link for {image.name}, stopping")
                break
            last_item = page_tags[-1]

        all_tags.sort()
        all_tags.reverse()
        return all_tags

    @staticmethod
    def _extract_page_tags(page: RegistryResponse) -> List[str]:
        # Empty or malformed pages count as zero tags
        if not isinstance(page.data, dict):
            return []
        page_tags = page.data.get("tags")
        if not isinstance(page_tags, list):
            return []
        return [tag for tag in page_tags if isinstance(tag, str)]

    # ==================== Manifests ====================

    def _select_platform_manifest(self, image: ContainerImage, manifests: List[Dict]) -> Optional[Dict]:
        """
        Pick the manifest list entry for the image platform.

        Entries must match architecture and os; among several, an exact variant
        match wins, otherwise the first match in list order.
        """
        logger.debug(f"Filter manifest for [arch={image.architecture}, os={image.os}, variant={image.variant}]")
        candidates = [
            manifest for manifest in manifests
            if isinstance(manifest, dict)
            and (manifest.get("platform") or {}).get("architecture") == image.architecture
            and (manifest.get("platform") or {}).get("os") == image.os
        ]
        if not candidates:
            return None

        if len(candidates) > 1:
            for manifest in candidates:
                if manifest["platform"].get("variant") == image.variant:
                    return manifest

        return candidates[0]

    @staticmethod
    def _parse_schema_v1(manifest: Dict) -> ManifestDescriptor:
        history = manifest.get("history")
        if not isinstance(history, list) or not history:
            raise NoManifestFoundError()
        try:
            v1_compat = json.loads(history[0]["v1Compatibility"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable v1Compatibility document: {e}")
            raise NoManifestFoundError()
        if not isinstance(v1_compat, dict):
            raise NoManifestFoundError()

        config = v1_compat.get("config")
        image = config.get("Image") if isinstance(config, dict) else None
        if not isinstance(image, str) or not image:
            raise NoManifestFoundError()
        return ManifestDescriptor(
            digest=image,
            created=v1_compat.get("created"),
            version=1,
        )

    async def resolve_manifest(self, image: ContainerImage, digest: Optional[str] = None) -> ManifestDescriptor:
        """
        Resolve a tag (default: the image tag) or digest to a manifest descriptor.

        Args:
            image: Image to resolve (registry url, name, platform)
            digest: Optional digest or tag overriding image.tag.value

        Returns:
            ManifestDescriptor with digest and manifest version (1 or 2)

        Raises:
            NoManifestFoundError: unrecognized media type, missing data, or no platform match
            RegistryRequestError: registry answered with an error status
        """
        tag_or_digest = digest or image.tag.value
        logger.debug(f"{self.name} - Get {image.name}:{tag_or_digest} manifest")

        response = await self.call_registry(
            image,
            f"{image.registry.url}/{image.name}/manifests/{tag_or_digest}",
            headers={"Accept": MANIFEST_ACCEPT_HEADER},
        )
        manifest = response.data
        if not isinstance(manifest, dict):
            raise NoManifestFoundError()

        schema_version = manifest.get("schemaVersion")
        manifest_digest: Optional[str] = None
        manifest_media_type: Optional[str] = None

        if schema_version == 1:
            descriptor = self._parse_schema_v1(manifest)
            logger.debug(f"Manifest found with [digest={descriptor.digest}, created={descriptor.created}, version=1]")
            return descriptor

        if schema_version == 2:
            media_type = manifest.get("mediaType")
            logger.debug(f"Manifests media type detected [{media_type}]")

            if media_type in MANIFEST_LIST_MEDIA_TYPES:
                selected = self._select_platform_manifest(image, manifest.get("manifests") or [])
                if selected is not None:
                    manifest_digest = selected.get("digest")
                    manifest_media_type = selected.get("mediaType")
                    logger.debug(f"Manifest found with [digest={manifest_digest}, mediaType={manifest_media_type}]")

            elif media_type in SINGLE_MANIFEST_MEDIA_TYPES:
                manifest_digest = tag_or_digest
                manifest_media_type = media_type

        if manifest_digest and manifest_media_type in SINGLE_MANIFEST_MEDIA_TYPES:
            # List-level digests are not what the engine records; ask for the
            # Docker-Content-Digest of the platform manifest itself
            head_response = await self.call_registry(
                image,
                f"{image.registry.url}/{image.name}/manifests/{manifest_digest}",
                method="HEAD",
                headers={"Accept": manifest_media_type},
            )
            content_digest = head_response.header("docker-content-digest")
            if not content_digest:
                raise NoManifestFoundError()
            logger.debug(f"Manifest found with [digest={content_digest}, version=2]")
            return ManifestDescriptor(digest=content_digest, version=2)

        if manifest_digest and manifest_media_type in IMAGE_CONFIG_MEDIA_TYPES:
            logger.debug(f"Manifest found with [digest={manifest_digest}, version=1]")
            return ManifestDescriptor(digest=manifest_digest, version=1)

        raise NoManifestFoundError()

    # ==================== Helpers ====================

    def get_image_full_name(self, image: ContainerImage, tag_or_digest: str) -> str:
        """
        Build a pullable reference for a tag or digest.

        Examples:
            (https://registry-1.docker.io/v2, library/nginx, 1.25) → registry-1.docker.io/library/nginx:1.25
            (..., sha256:abc) → registry-1.docker.io/library/nginx@sha256:abc
        """
        separator = "@" if ":" in tag_or_digest else ":"
        full_name = f"{image.registry.url}/{image.name}{separator}{tag_or_digest}"
        full_name = re.sub(r"https?://", "", full_name)
        return full_name.replace("/v2", "", 1)

    def with_tag(self, image: ContainerImage, tag: str) -> ContainerImage:
        """Copy of image pointing at another tag"""
        return image.model_copy(update={"tag": image.tag.model_copy(update={"value": tag})})

    def __repr__(self) -> str:
        return f"RegistryClient(name={self.name!r})"
