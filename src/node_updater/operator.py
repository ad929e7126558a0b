"""kopf hosting: one daemon per ``SafeEvict`` resource, pacing itself by the requeue delay."""

import logging
import os
from typing import Any, Iterable, Optional

import kopf

from .client import NodeUpdaterClient
from .errors import ConfigurationError, MalformedInputError
from .models import Campaign
from .services.cluster import CAMPAIGN_GROUP, CAMPAIGN_PLURAL, CAMPAIGN_VERSION
from .utils.config import load_config

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "NODE_UPDATER_CONFIG"

_client: Optional[NodeUpdaterClient] = None


def _require_client() -> NodeUpdaterClient:
    if _client is None:
        raise kopf.TemporaryError("Operator is not initialized yet", delay=10)
    return _client


@kopf.on.startup()
def startup_handler(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Load the configuration and build the clients once per process."""
    global _client

    settings.posting.level = logging.WARNING
    settings.watching.server_timeout = 10 * 60

    try:
        config = load_config(os.environ.get(CONFIG_FILE_ENV) or None)
    except ConfigurationError as exc:
        raise kopf.PermanentError(str(exc)) from exc

    # kopf owns the handlers; only the package's own level is configurable.
    logging.getLogger(__package__).setLevel(config.log_level)
    _client = NodeUpdaterClient(config)
    logger.info(
        "node-updater started for cluster %s in resource group %s",
        config.cluster_name,
        config.resource_group,
    )


@kopf.daemon(CAMPAIGN_GROUP, CAMPAIGN_VERSION, CAMPAIGN_PLURAL, cancellation_timeout=30)
def campaign_daemon(spec: Any, name: str, namespace: str, stopped: Any, **_: Any) -> None:
    """Reconcile one campaign until the resource is deleted or the operator stops.

    kopf runs a single daemon per resource, so passes of the same campaign
    never overlap.
    """
    engine = _require_client().engine
    while not stopped:
        try:
            campaign = Campaign.from_body(name, namespace, dict(spec))
        except MalformedInputError as exc:
            logger.error("Invalid SafeEvict %s/%s: %s", namespace, name, exc)
            delay = engine.config.error_requeue_seconds
        else:
            delay = engine.reconcile(campaign)
        stopped.wait(delay)
    logger.info("Stopped reconciling %s/%s", namespace, name)


@kopf.on.probe(id="initialized")
def initialized_probe(**_: Any) -> bool:
    return _client is not None


def run(
    config_file: Optional[str] = None,
    namespaces: Iterable[str] = (),
    liveness_endpoint: Optional[str] = None,
) -> None:
    """Start the operator loop in the current thread."""
    if config_file:
        os.environ[CONFIG_FILE_ENV] = config_file
    namespaces = list(namespaces)
    kopf.run(
        standalone=True,
        clusterwide=not namespaces,
        namespaces=namespaces,
        liveness_endpoint=liveness_endpoint,
    )
