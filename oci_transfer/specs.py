#!/usr/bin/env python

# pylint: disable=too-few-public-methods

"""Reusable string literals."""

OAUTH2_CLIENT_ID = "oci-transfer"


class DockerAuthentication:
    """
    https://docs.docker.com/registry/spec/auth/token/
    https://github.com/docker/distribution/blob/master/docs/spec/auth/scope.md
    """

    SCOPE_REPOSITORY_PULL_PATTERN = "repository:{0}:pull"
    SCOPE_REPOSITORY_ALL_PATTERN = "repository:{0}:pull,push"
    SCOPE_REPOSITORY_PLUGIN_ALL_PATTERN = "repository(plugin):{0}:pull,push"


class DockerMediaTypes:
    """https://github.com/docker/distribution/blob/master/docs/spec/manifest-v2-2.md#manifest-list"""

    DISTRIBUTION_MANIFEST_LIST_V2 = (
        "application/vnd.docker.distribution.manifest.list.v2+json"
    )
    DISTRIBUTION_MANIFEST_V1 = "application/vnd.docker.distribution.manifest.v1+json"
    DISTRIBUTION_MANIFEST_V1_SIGNED = (
        "application/vnd.docker.distribution.manifest.v1+prettyjws"
    )
    DISTRIBUTION_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"


class Indices:
    """Common registry indices."""

    DOCKERHUB = "docker.io"
    DOCKERHUB_API = "registry-1.docker.io"
    DOCKERHUB_CREDENTIALS = "index.docker.io"
    DOCKERHUB_ALIASES = (DOCKERHUB, DOCKERHUB_API, DOCKERHUB_CREDENTIALS)


class MediaTypes:
    """Generic mime types."""

    APPLICATION_OCTET_STREAM = "application/octet-stream"


class OCIMediaTypes:
    """https://github.com/opencontainers/image-spec/blob/master/media-types.md"""

    ARTIFACT_MANIFEST_V1 = "application/vnd.oci.artifact.manifest.v1+json"
    IMAGE_INDEX_V1 = "application/vnd.oci.image.index.v1+json"
    IMAGE_LAYER_GZIP_V1 = "application/vnd.oci.image.layer.v1.tar+gzip"
    IMAGE_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"


# Media types served from the manifests endpoint rather than the blobs endpoint
MANIFEST_MEDIA_TYPES = (
    OCIMediaTypes.IMAGE_MANIFEST_V1,
    OCIMediaTypes.IMAGE_INDEX_V1,
    OCIMediaTypes.ARTIFACT_MANIFEST_V1,
    DockerMediaTypes.DISTRIBUTION_MANIFEST_V2,
    DockerMediaTypes.DISTRIBUTION_MANIFEST_LIST_V2,
    DockerMediaTypes.DISTRIBUTION_MANIFEST_V1,
    DockerMediaTypes.DISTRIBUTION_MANIFEST_V1_SIGNED,
)
