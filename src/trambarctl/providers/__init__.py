"""Wrappers around the external tools trambarctl drives."""
from __future__ import annotations

from .certbot import CertbotError, CertbotProvider
from .compose import ComposeError, ComposeProvider
from .docker import ContainerInfo, DockerError, DockerProvider, ImageInfo
from .packages import (
    COMPOSE,
    DOCKER,
    DOCKER_DOWNLOAD_URL,
    PackageInstaller,
    PackageInstallError,
)

__all__ = [
    "COMPOSE",
    "CertbotError",
    "CertbotProvider",
    "ComposeError",
    "ComposeProvider",
    "ContainerInfo",
    "DOCKER",
    "DOCKER_DOWNLOAD_URL",
    "DockerError",
    "DockerProvider",
    "ImageInfo",
    "PackageInstallError",
    "PackageInstaller",
]
