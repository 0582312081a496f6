"""Pydantic v2 models for the governance rule document.

Every model accepts unknown keys (``extra="allow"``); whatever a model does
not recognise is kept in its opaque bag (``unrecognized``) so the strict
schema pass in :mod:`govcore.schema` can report it as drift.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


class PolicyModel(BaseModel):
    """Base for all document sections: permissive, unknown keys preserved."""

    model_config = ConfigDict(extra="allow")

    @property
    def unrecognized(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


# ── Checks & raw rules ──────────────────────────────────────────────────────


class CheckSpec(PolicyModel):
    """Wire form of a single check; ``type`` is validated by the compiler."""

    type: str
    path: str = ""
    message: str | None = None
    pattern: str | None = None
    ignore_case: bool = False
    values: list[Any] | None = None
    keys: list[str] | None = None
    value: Any = None
    fallback_paths: list[str] = Field(default_factory=list)
    normalize: str | None = None


class SuggestSpec(PolicyModel):
    title: str | None = None
    text: str
    fix: dict[str, Any] | None = None


class TargetSpec(PolicyModel):
    tool: str | None = None
    prefix: str | None = None


class RawPolicy(PolicyModel):
    id: str
    description: str = ""
    target: TargetSpec
    effect: Literal["deny", "warn"] = "deny"
    checks: list[CheckSpec] = Field(default_factory=list)
    suggest: str | SuggestSpec | None = None
    controls: list[str] = Field(default_factory=list)


# ── Azure action sections ───────────────────────────────────────────────────

_TlsLiteral = Literal["1.0", "1.1", "1.2", "1.3"]


def _tls_text(value: Any) -> Any:
    # unquoted `min_tls_version: 1.2` loads from YAML as a float
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{float(value):.1f}"
    return value


TlsVersion = Annotated[
    _TlsLiteral, BeforeValidator(_tls_text, json_schema_input_type=_TlsLiteral | float)
]


class NamingPolicy(PolicyModel):
    deny_names: list[str] | None = None
    deny_contains: list[str] | None = None
    deny_regex: str | None = None
    name_regex: str | None = None
    name_no_spaces: bool | None = None
    controls: list[str] = Field(default_factory=list)


class ResourceGroupPolicy(NamingPolicy):
    allowed_regions: list[str] | None = None
    require_tags: list[str] | None = None
    suggest_name: str | None = None
    suggest_region: str | None = None
    suggest_tags: dict[str, str] | None = None


class StorageAccountPolicy(NamingPolicy):
    sku_allowlist: list[str] | None = None
    kind_allowlist: list[str] | None = None
    require_https_only: bool | None = None
    min_tls_version: TlsVersion | None = None
    public_network_access: Literal["Enabled", "Disabled"] | None = None
    require_tags: list[str] | None = None


class KeyVaultPolicy(NamingPolicy):
    sku_allowlist: list[str] | None = None
    require_rbac: bool | None = None
    require_public_network_disabled: bool | None = None
    require_purge_protection: bool | None = None
    require_soft_delete: bool | None = None


class LogAnalyticsPolicy(PolicyModel):
    allowed_regions: list[str] | None = None
    retention_days_allowlist: list[int] | None = None
    require_tags: list[str] | None = None
    controls: list[str] = Field(default_factory=list)


class VirtualNetworkPolicy(NamingPolicy):
    allowed_regions: list[str] | None = None
    require_tags: list[str] | None = None
    require_ddos_plan: bool | None = None


class SubnetPolicy(NamingPolicy):
    require_nsg: bool | None = None
    require_private_endpoint_policies_disabled: bool | None = None


class PrivateEndpointPolicy(PolicyModel):
    target_regexes: list[str] | None = None
    require_dns_zone_link: bool | None = None
    controls: list[str] = Field(default_factory=list)


class AppServicePlanPolicy(PolicyModel):
    sku_allowlist: list[str] | None = None
    controls: list[str] = Field(default_factory=list)


class WebAppPolicy(NamingPolicy):
    runtime_allowlist: list[str] | None = None
    require_https_only: bool | None = None
    min_tls_version: TlsVersion | None = None


class PublicIpPolicy(PolicyModel):
    sku_allowlist: list[str] | None = None
    allocation_allowlist: list[str] | None = None
    version_allowlist: list[str] | None = None
    controls: list[str] = Field(default_factory=list)


class AzurePolicySet(PolicyModel):
    create_resource_group: ResourceGroupPolicy | None = None
    create_storage_account: StorageAccountPolicy | None = None
    create_key_vault: KeyVaultPolicy | None = None
    create_log_analytics_workspace: LogAnalyticsPolicy | None = None
    create_virtual_network: VirtualNetworkPolicy | None = None
    create_subnet: SubnetPolicy | None = None
    create_private_endpoint: PrivateEndpointPolicy | None = None
    create_app_service_plan: AppServicePlanPolicy | None = None
    create_web_app: WebAppPolicy | None = None
    create_public_ip: PublicIpPolicy | None = None


# ── GitHub action sections ──────────────────────────────────────────────────


class RepositoryPolicy(NamingPolicy):
    visibility_allowlist: list[str] | None = None
    require_description: bool | None = None


class GithubPolicySet(PolicyModel):
    create_repository: RepositoryPolicy | None = None


# ── Advisory (ATO) section ──────────────────────────────────────────────────


class AdvisoryRule(PolicyModel):
    title: str | None = None
    severity: str | None = None
    controls: list[str] = Field(default_factory=list)
    suggest: str | None = None
    fix: dict[str, Any] | None = None
    checks: list[CheckSpec] = Field(default_factory=list)


class AdvisoryDomain(PolicyModel):
    target: TargetSpec | None = None
    rules: dict[str, AdvisoryRule] = Field(default_factory=dict)


class AtoSection(PolicyModel):
    default_profile: str | None = None
    profiles: dict[str, dict[str, AdvisoryDomain]] = Field(default_factory=dict)
    policies: list[RawPolicy] = Field(default_factory=list)


# ── PolicyDocument (merged) ─────────────────────────────────────────────────


class PolicyDocument(PolicyModel):
    aliases: dict[str, str] = Field(default_factory=dict)
    azure: AzurePolicySet | None = None
    github: GithubPolicySet | None = None
    policies: list[RawPolicy] = Field(default_factory=list)
    ato: AtoSection | None = None

    def provider_sections(self) -> dict[str, PolicyModel]:
        """Known provider namespaces present in this document."""
        out: dict[str, PolicyModel] = {}
        if self.azure is not None:
            out["azure"] = self.azure
        if self.github is not None:
            out["github"] = self.github
        return out

    def active_profile(self, override: str = "") -> str:
        if override:
            return override
        if self.ato is not None and self.ato.default_profile:
            return self.ato.default_profile
        return "default"

    def advisory_rule(self, profile: str, domain: str, code: str) -> AdvisoryRule | None:
        """Look up one advisory entry by profile, domain and rule code."""
        if self.ato is None:
            return None
        return self.ato.profiles.get(profile, {}).get(domain, AdvisoryDomain()).rules.get(code)
