"""CA bundle registration for the admission webhook configurations."""

from __future__ import annotations

import base64
import logging
from enum import Enum
from typing import TYPE_CHECKING

import jsonpatch
from kubernetes.client.exceptions import ApiException

from batch_controller.core.config import Settings
from batch_controller.models.k8s import serialize_model
from batch_controller.services.k8s_store import translate_api_exception

if TYPE_CHECKING:
    from kubernetes.client import AdmissionregistrationV1Api

logger = logging.getLogger(__name__)

JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


class WebhookNotFoundError(Exception):
    """Raised when the named webhook entry is missing from its configuration."""

    pass


class WebhookKind(str, Enum):
    """Kind of admission webhook configuration."""

    MUTATING = "mutating"
    VALIDATING = "validating"


def patch_webhook_ca_bundle(
    api: AdmissionregistrationV1Api,
    kind: WebhookKind,
    config_name: str,
    webhook_name: str,
    ca_bundle: bytes,
) -> bool:
    """Set the CA bundle of one webhook entry, patching only on change.

    The change is sent as an RFC 6902 JSON Patch computed between the
    configuration as read and as updated. Once the bundle is in place the
    patch is empty and nothing is sent.

    Args:
        api: Admission registration API client
        kind: Whether the configuration is mutating or validating
        config_name: Name of the webhook configuration resource
        webhook_name: Name of the webhook entry inside the configuration
        ca_bundle: PEM encoded CA certificate(s)

    Returns:
        True if a patch was applied, False if the bundle was already current

    Raises:
        WebhookNotFoundError: If the configuration has no such webhook entry
        ResourceNotFoundError: If the configuration does not exist
    """
    if kind == WebhookKind.MUTATING:
        read, patch = (
            api.read_mutating_webhook_configuration,
            api.patch_mutating_webhook_configuration,
        )
    else:
        read, patch = (
            api.read_validating_webhook_configuration,
            api.patch_validating_webhook_configuration,
        )

    what = f"{kind.value} webhook configuration {config_name}"
    try:
        config = read(name=config_name)
    except ApiException as e:
        raise translate_api_exception(e, what) from e

    before = serialize_model(config)

    encoded = base64.b64encode(ca_bundle).decode()
    webhook = next((w for w in config.webhooks or [] if w.name == webhook_name), None)
    if webhook is None:
        raise WebhookNotFoundError(
            f"webhook entry {webhook_name!r} not found in config {config_name!r}"
        )
    webhook.client_config.ca_bundle = encoded

    body = jsonpatch.make_patch(before, serialize_model(config)).patch
    if not body:
        logger.debug("CA bundle of %s is up to date", what)
        return False

    try:
        patch(name=config_name, body=body, _content_type=JSON_PATCH_CONTENT_TYPE)
    except ApiException as e:
        raise translate_api_exception(e, what) from e
    logger.info("Patched CA bundle into %s (webhook %s)", what, webhook_name)
    return True


def register_ca_bundle(api: AdmissionregistrationV1Api, settings: Settings) -> None:
    """Patch the configured CA certificate into both job webhooks."""
    if settings.ca_cert_file is None:
        return

    ca_bundle = settings.ca_cert_file.read_bytes()
    patch_webhook_ca_bundle(
        api,
        WebhookKind.MUTATING,
        settings.mutate_webhook_config_name,
        settings.mutate_webhook_name,
        ca_bundle,
    )
    patch_webhook_ca_bundle(
        api,
        WebhookKind.VALIDATING,
        settings.validate_webhook_config_name,
        settings.validate_webhook_name,
        ca_bundle,
    )
