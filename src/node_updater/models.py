"""Data models for the node-updater operator."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import MalformedInputError

POOL_LABEL = "agentpool"
NODE_IMAGE_LABEL = "kubernetes.azure.com/node-image-version"
AGENT_POOL_ENV = "AZP_POOL"

TEMPORARY_POOL_PREFIX = "tmp"
# AKS rejects agent pool names longer than 12 characters.
MAX_POOL_NAME_LENGTH = 12


class PoolMode(str, Enum):
    """Agent pool modes."""
    SYSTEM = "System"
    USER = "User"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PoolMode":
        if value and str(value).lower() == "system":
            return cls.SYSTEM
        return cls.USER


class ProvisioningState(str, Enum):
    """Provisioning states reported by the managed cluster for an agent pool."""
    SUCCEEDED = "Succeeded"
    CREATING = "Creating"
    UPDATING = "Updating"
    UPGRADING_NODE_IMAGE = "UpgradingNodeImageVersion"
    DELETING = "Deleting"
    FAILED = "Failed"
    OTHER = "Other"

    @classmethod
    def _missing_(cls, value: object) -> "ProvisioningState":
        return cls.OTHER

    @property
    def busy(self) -> bool:
        """True while the control plane is still working on the pool."""
        return self in (
            ProvisioningState.CREATING,
            ProvisioningState.UPDATING,
            ProvisioningState.UPGRADING_NODE_IMAGE,
            ProvisioningState.DELETING,
        )


class ScalingConfig(BaseModel):
    """Scaling settings of a pool as stored in the scaling-state record.

    Serialized as ``{"MinCount": n, "MaxCount": m}`` for autoscaled pools and
    ``{"Count": n}`` for pools with a fixed size.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    min_count: Optional[int] = Field(default=None, alias="MinCount")
    max_count: Optional[int] = Field(default=None, alias="MaxCount")
    count: Optional[int] = Field(default=None, alias="Count")

    @model_validator(mode="after")
    def _require_shape(self) -> "ScalingConfig":
        if self.min_count is not None and self.max_count is not None:
            return self
        if self.count is not None:
            return self
        raise ValueError("scaling config needs MinCount and MaxCount, or Count")

    @classmethod
    def autoscaled(cls, min_count: int, max_count: int) -> "ScalingConfig":
        return cls(min_count=min_count, max_count=max_count)

    @classmethod
    def fixed(cls, count: int) -> "ScalingConfig":
        return cls(count=count)

    @property
    def is_autoscaled(self) -> bool:
        return self.min_count is not None and self.max_count is not None

    def to_record(self) -> str:
        if self.is_autoscaled:
            return json.dumps({"MinCount": self.min_count, "MaxCount": self.max_count})
        return json.dumps({"Count": self.count})

    @classmethod
    def from_record(cls, raw: str) -> "ScalingConfig":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise MalformedInputError(f"Invalid scaling record {raw!r}: {exc}") from exc

    def describe(self) -> str:
        if self.is_autoscaled:
            return f"autoscale {self.min_count}-{self.max_count}"
        return f"fixed {self.count}"


@dataclass
class Pool:
    """An agent pool as seen by the reconciler."""
    name: str
    mode: PoolMode = PoolMode.USER
    provisioning_state: ProvisioningState = ProvisioningState.SUCCEEDED
    count: Optional[int] = None
    min_count: Optional[int] = None
    max_count: Optional[int] = None
    enable_auto_scaling: bool = False
    current_image: Optional[str] = None
    latest_image: Optional[str] = None
    # SDK object the pool was read from; updates are applied to a copy of it.
    raw: Any = field(default=None, repr=False, compare=False)

    @property
    def is_system(self) -> bool:
        return self.mode is PoolMode.SYSTEM

    @property
    def is_ready(self) -> bool:
        return self.provisioning_state is ProvisioningState.SUCCEEDED

    @property
    def image_outdated(self) -> bool:
        """True when both versions are known and differ."""
        if self.current_image is None or self.latest_image is None:
            return False
        return self.current_image != self.latest_image

    @property
    def scaling(self) -> ScalingConfig:
        """Current scaling settings, in the shape persisted before an upgrade."""
        if self.enable_auto_scaling and self.min_count is not None and self.max_count is not None:
            return ScalingConfig.autoscaled(self.min_count, self.max_count)
        if self.count is None:
            raise MalformedInputError(f"Pool '{self.name}' reports neither a node count nor autoscaling bounds")
        return ScalingConfig.fixed(self.count)

    def matches(self, config: ScalingConfig) -> bool:
        """Whether the live settings already equal ``config``."""
        if config.is_autoscaled:
            return (
                self.enable_auto_scaling
                and self.min_count == config.min_count
                and self.max_count == config.max_count
            )
        return not self.enable_auto_scaling and self.count == config.count


@dataclass
class NodeInfo:
    """A Kubernetes node and the pool it belongs to."""
    name: str
    pool: Optional[str] = None
    image_version: Optional[str] = None
    unschedulable: bool = False
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OwnerReference:
    kind: str
    name: str


@dataclass
class PodInfo:
    """The parts of a pod the eviction pipeline looks at."""
    name: str
    namespace: str
    node_name: Optional[str] = None
    phase: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_running(self) -> bool:
        return self.phase == "Running"

    def job_owner(self) -> Optional[str]:
        for owner in self.owner_references:
            if owner.kind.lower() == "job":
                return owner.name
        return None


class CampaignSpec(BaseModel):
    """Spec of a ``SafeEvict`` custom resource."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    label_selector: Dict[str, str] = Field(default_factory=dict, alias="labelSelector")
    idle_sentinels: List[str] = Field(alias="lastLogLines")
    monitored_pools: List[str] = Field(default_factory=list, alias="nodepools")
    namespaces: List[str] = Field(default_factory=list)
    base_pool: str = Field(alias="baseForBackupPoolName")

    @field_validator("base_pool")
    @classmethod
    def _base_pool_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("baseForBackupPoolName must not be empty")
        return value.strip()

    def temporary_pool_name(self) -> str:
        room = MAX_POOL_NAME_LENGTH - len(TEMPORARY_POOL_PREFIX)
        return TEMPORARY_POOL_PREFIX + self.base_pool[:room]


@dataclass
class Campaign:
    """One ``SafeEvict`` resource: identity plus spec."""
    name: str
    namespace: str
    spec: CampaignSpec

    @property
    def temporary_pool_name(self) -> str:
        return self.spec.temporary_pool_name()

    @property
    def scaling_record_name(self) -> str:
        return TEMPORARY_POOL_PREFIX + self.name

    @classmethod
    def from_body(cls, name: str, namespace: str, spec: Dict[str, Any]) -> "Campaign":
        try:
            parsed = CampaignSpec.model_validate(dict(spec or {}))
        except ValidationError as exc:
            raise MalformedInputError(f"Invalid SafeEvict spec for {namespace}/{name}: {exc}") from exc
        return cls(name=name, namespace=namespace, spec=parsed)
