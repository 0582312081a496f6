"""Rule compiler — turns a PolicyDocument into a flat list of Rules.

Compilation order is fixed so the same document always yields the same
rule list:

1. provider sections (``azure``, ``github``), action kinds in schema order,
   intents in table order, then suggestions;
2. top-level raw ``policies``;
3. the active advisory (ATO) profile, then ``ato.policies``.

Hard-constraint problems (bad regex, unknown check kind in a deny rule)
raise ConfigParseError. Advisory problems are skipped with a warning.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from govcore.errors import ConfigParseError
from govcore.models import (
    AppServicePlanPolicy,
    AtoSection,
    CheckSpec,
    KeyVaultPolicy,
    LogAnalyticsPolicy,
    PolicyDocument,
    PolicyModel,
    PrivateEndpointPolicy,
    PublicIpPolicy,
    RawPolicy,
    RepositoryPolicy,
    ResourceGroupPolicy,
    StorageAccountPolicy,
    SubnetPolicy,
    TargetSpec,
    VirtualNetworkPolicy,
    WebAppPolicy,
)
from govcore.policy.checks import NORMALIZERS, Check, CheckKind
from govcore.policy.rules import Effect, Rule, RuleTarget, Suggestion

logger = logging.getLogger(__name__)

TLS_VERSIONS = ("1.0", "1.1", "1.2", "1.3")

# Advisory domains whose target is implied by their name.
DEFAULT_DOMAIN_TARGETS: dict[str, str] = {
    "resourceGroup": "azure.create_resource_group",
    "storageAccount": "azure.create_storage_account",
    "key_vault": "azure.create_key_vault",
    "keyVault": "azure.create_key_vault",
    "webapp": "azure.create_web_app",
    "appPlan": "azure.create_app_service_plan",
    "functionApp": "azure.create_function_app",
    "sqlDatabase": "azure.create_sql_database",
    "logAnalyticsWorkspace": "azure.create_log_analytics_workspace",
    "repository": "github.create_repository",
}


class _SkipCheck(Exception):
    """A check entry cannot be compiled."""


def _valid_pattern(pattern: str) -> str:
    try:
        re.compile(pattern)
    except re.error as e:
        raise _SkipCheck(f"invalid regex {pattern!r}: {e}") from e
    return pattern


_GLOBAL_FLAGS = re.compile(r"^\(\?([aiLmsux]+)\)")


def _group(pattern: str) -> str:
    """Wrap *pattern* for embedding; leading global flags become scoped flags."""
    flags = ""
    m = _GLOBAL_FLAGS.match(pattern)
    while m:
        flags += m.group(1)
        pattern = pattern[m.end():]
        m = _GLOBAL_FLAGS.match(pattern)
    if not flags:
        return f"(?:{pattern})"
    return f"(?{''.join(dict.fromkeys(flags))}:{pattern})"


def _composed(user_pattern: str, composed: str) -> str:
    try:
        re.compile(composed)
    except re.error as e:
        raise _SkipCheck(f"regex {user_pattern!r} cannot be embedded: {e}") from e
    return composed



def _alternation(terms: list[str]) -> str:
    return "|".join(re.escape(str(t)) for t in terms)


# ── Intent builders ─────────────────────────────────────────────────────────
# Each builder maps one section value to the checks of one rule (or None).

Builder = Callable[[Any], "tuple[Check, ...] | None"]


def _deny_names(terms: list[str]) -> tuple[Check, ...] | None:
    if not terms:
        return None
    # word-ish boundaries that also hold for terms ending in punctuation
    pattern = rf"^(?!.*(?<!\w)(?:{_alternation(terms)})(?!\w)).+$"
    return (Check(
        CheckKind.REGEX_MATCH, "name", pattern=pattern, ignore_case=True,
        message=f"name cannot contain: {', '.join(terms)}",
    ),)


def _deny_contains(terms: list[str]) -> tuple[Check, ...] | None:
    if not terms:
        return None
    pattern = rf"^(?!.*(?:{_alternation(terms)})).+$"
    return (Check(
        CheckKind.REGEX_MATCH, "name", pattern=pattern, ignore_case=True,
        message=f"name contains a banned term ({', '.join(terms)})",
    ),)


def _deny_regex(user_pattern: str) -> tuple[Check, ...] | None:
    if not user_pattern:
        return None
    _valid_pattern(user_pattern)
    pattern = _composed(user_pattern, rf"^(?!.*{_group(user_pattern)}).+$")
    return (Check(
        CheckKind.REGEX_MATCH, "name", pattern=pattern,
        ignore_case=True, message="name matches a denied pattern",
    ),)


def _name_regex(pattern: str) -> tuple[Check, ...] | None:
    if not pattern:
        return None
    return (Check(CheckKind.REGEX_MATCH, "name", pattern=_valid_pattern(pattern)),)


def _any_regex(path: str, message: str, fallback_paths: tuple[str, ...] = ()) -> Builder:
    def build(patterns: list[str]) -> tuple[Check, ...] | None:
        if not patterns:
            return None
        joined = "|".join(_group(_valid_pattern(p)) for p in patterns)
        return (Check(
            CheckKind.REGEX_MATCH, path, pattern=_composed("|".join(patterns), joined),
            ignore_case=True, message=message, fallback_paths=fallback_paths,
        ),)
    return build


def _allowed(
    path: str,
    fallback_paths: tuple[str, ...] = (),
    ignore_case: bool = False,
    normalize: str | None = None,
) -> Builder:
    def build(values: list[Any]) -> tuple[Check, ...] | None:
        if not values:
            return None
        return (Check(
            CheckKind.VALUE_IN_ALLOWED_SET, path, values=tuple(values),
            fallback_paths=fallback_paths, ignore_case=ignore_case, normalize=normalize,
        ),)
    return build


def _min_tls(path: str) -> Builder:
    def build(minimum: str) -> tuple[Check, ...] | None:
        if not minimum:
            return None
        allowed = TLS_VERSIONS[TLS_VERSIONS.index(minimum):]
        return (Check(
            CheckKind.VALUE_IN_ALLOWED_SET, path, values=allowed,
            message=f"minimum TLS version must be at least {minimum}",
        ),)
    return build


def _required_keys(path: str) -> Builder:
    def build(keys: list[str]) -> tuple[Check, ...] | None:
        if not keys:
            return None
        return (Check(CheckKind.REQUIRED_KEYS_PRESENT, path, keys=tuple(keys)),)
    return build


def _flag(
    kind: CheckKind,
    path: str,
    message: str | None = None,
    expected: Any = None,
    fallback_paths: tuple[str, ...] = (),
) -> Builder:
    def build(enabled: bool) -> tuple[Check, ...] | None:
        if not enabled:
            return None
        return (Check(kind, path, message=message, expected=expected,
                      fallback_paths=fallback_paths),)
    return build


def _equals(path: str) -> Builder:
    def build(value: Any) -> tuple[Check, ...] | None:
        if value is None:
            return None
        return (Check(CheckKind.EQUALS, path, expected=value),)
    return build


@dataclass(frozen=True)
class _Intent:
    field: str
    suffix: str
    description: str
    build: Builder
    effect: Effect = Effect.DENY


_NAMING = [
    _Intent("deny_names", "denyNames", "Disallow specific names", _deny_names),
    _Intent("deny_contains", "denyContains", "Disallow banned name substrings", _deny_contains),
    _Intent("deny_regex", "denyRegex", "Disallow names matching a pattern", _deny_regex),
    _Intent("name_regex", "nameRegex", "Name must match pattern", _name_regex),
    _Intent("name_no_spaces", "nameNoSpaces", "Name must not contain spaces",
            _flag(CheckKind.NO_WHITESPACE, "name")),
]
_REGIONS = _Intent("allowed_regions", "allowedRegions", "Allowed locations",
                   _allowed("location", ignore_case=True))
_TAGS = _Intent("require_tags", "requiredTags", "Required tags", _required_keys("tags"))
_HTTPS_ONLY = _Intent("require_https_only", "httpsOnly", "HTTPS-only traffic required",
                      _flag(CheckKind.BOOLEAN_MUST_BE_TRUE, "httpsOnly", "https-only must be enabled"))
_MIN_TLS = _Intent("min_tls_version", "minTls", "Minimum TLS version", _min_tls("minTlsVersion"))

SECTION_INTENTS: dict[type[PolicyModel], list[_Intent]] = {
    ResourceGroupPolicy: _NAMING + [_REGIONS, _TAGS],
    StorageAccountPolicy: _NAMING + [
        _Intent("sku_allowlist", "skuAllow", "Storage SKU allowlist", _allowed("sku")),
        _Intent("kind_allowlist", "kindAllow", "Storage kind allowlist", _allowed("kind")),
        _HTTPS_ONLY,
        _MIN_TLS,
        _Intent("public_network_access", "publicNetworkAccess", "Public network access setting",
                _equals("publicNetworkAccess")),
        _TAGS,
    ],
    KeyVaultPolicy: _NAMING + [
        _Intent("sku_allowlist", "skuAllow", "Key Vault SKU allowlist",
                _allowed("sku", ("properties.sku.name",), ignore_case=True)),
        _Intent("require_rbac", "rbac", "RBAC authorization required",
                _flag(CheckKind.BOOLEAN_MUST_BE_TRUE, "enableRbacAuthorization",
                      "RBAC authorization must be enabled",
                      fallback_paths=("properties.enableRbacAuthorization",))),
        _Intent("require_public_network_disabled", "publicNetworkDisabled",
                "Public network access must be disabled",
                _flag(CheckKind.EQUALS, "publicNetworkAccess",
                      "Public network access must be disabled", expected="Disabled",
                      fallback_paths=("properties.publicNetworkAccess",))),
        _Intent("require_purge_protection", "purgeProtection", "Purge protection required",
                _flag(CheckKind.BOOLEAN_MUST_BE_TRUE, "enablePurgeProtection",
                      "purge protection must be enabled")),
        _Intent("require_soft_delete", "softDelete", "Soft delete required",
                _flag(CheckKind.BOOLEAN_MUST_BE_TRUE, "enableSoftDelete",
                      "soft delete must be enabled")),
    ],
    LogAnalyticsPolicy: [
        _REGIONS,
        _Intent("retention_days_allowlist", "retentionAllow", "Retention days allowlist",
                _allowed("retentionInDays")),
        _TAGS,
    ],
    VirtualNetworkPolicy: _NAMING + [
        _REGIONS,
        _TAGS,
        _Intent("require_ddos_plan", "ddosPlan", "DDoS protection plan recommended",
                _flag(CheckKind.FIELD_MUST_BE_PRESENT, "ddosProtectionPlan",
                      "Consider attaching a DDoS protection plan"),
                effect=Effect.WARN),
    ],
    SubnetPolicy: _NAMING + [
        _Intent("require_nsg", "nsg", "Subnet must have an NSG",
                _flag(CheckKind.FIELD_MUST_BE_PRESENT, "networkSecurityGroup",
                      "subnet must be associated with an NSG", fallback_paths=("nsgId",))),
        _Intent("require_private_endpoint_policies_disabled", "peNetworkPolicies",
                "Private endpoint network policies should be disabled",
                _flag(CheckKind.EQUALS, "privateEndpointNetworkPolicies",
                      "disable private endpoint network policies for PE subnets",
                      expected="Disabled"),
                effect=Effect.WARN),
    ],
    PrivateEndpointPolicy: [
        _Intent("target_regexes", "targetAllow", "Permitted private endpoint targets",
                _any_regex("targetResourceId", "target resource type not permitted by policy",
                           ("privateLinkServiceId",))),
        _Intent("require_dns_zone_link", "dnsZoneLink", "Private DNS zone link recommended",
                _flag(CheckKind.FIELD_MUST_BE_PRESENT, "privateDnsZoneGroup",
                      "link to Private DNS Zone for the target resource type",
                      fallback_paths=("dnsZoneGroup",)),
                effect=Effect.WARN),
    ],
    AppServicePlanPolicy: [
        _Intent("sku_allowlist", "skuAllow", "App Service Plan SKU allowlist",
                _allowed("skuName", ("sku",), normalize="planSkuFamily")),
    ],
    WebAppPolicy: _NAMING + [
        _Intent("runtime_allowlist", "runtimeAllow", "Web App runtime allowlist",
                _allowed("runtimeStack", ("runtime", "linuxFxVersion", "siteConfig.linuxFxVersion"),
                         ignore_case=True)),
        _HTTPS_ONLY,
        _MIN_TLS,
    ],
    PublicIpPolicy: [
        _Intent("sku_allowlist", "skuAllow", "Public IP SKU allowlist", _allowed("sku")),
        _Intent("allocation_allowlist", "allocationAllow", "Public IP allocation allowlist",
                _allowed("publicIPAllocationMethod")),
        _Intent("version_allowlist", "versionAllow", "Public IP version allowlist",
                _allowed("publicIPAddressVersion")),
    ],
    RepositoryPolicy: _NAMING + [
        _Intent("visibility_allowlist", "visibilityAllow", "Repository visibility allowlist",
                _allowed("visibility")),
        _Intent("require_description", "description", "Repository description required",
                _flag(CheckKind.FIELD_MUST_BE_PRESENT, "description",
                      "repository description is required")),
    ],
}


def _suggestions(section: PolicyModel) -> list[tuple[str, str, Suggestion]]:
    """(suffix, description, suggestion) for every suggest_* key present."""
    out = []
    name = getattr(section, "suggest_name", None)
    if name:
        out.append(("suggestName", f"Consider a name like {name}",
                    Suggestion(title="Suggested name", text=name, proposed_fix={"name": name})))
    region = getattr(section, "suggest_region", None)
    if region:
        out.append(("suggestRegion", f"Consider region {region}",
                    Suggestion(title="Suggested region", text=region,
                               proposed_fix={"location": region})))
    tags = getattr(section, "suggest_tags", None)
    if tags:
        text = ", ".join(f"{k}: {v}" for k, v in tags.items())
        out.append(("suggestTags", f"Consider tags {text}",
                    Suggestion(title="Suggested tags", text=text,
                               proposed_fix={"tags": dict(tags)})))
    return out


def check_from_spec(spec: CheckSpec) -> Check:
    """Convert one wire check entry; raises _SkipCheck when unusable."""
    try:
        kind = CheckKind(spec.type)
    except ValueError:
        raise _SkipCheck(f"unknown check type {spec.type!r}") from None
    if not spec.path:
        raise _SkipCheck(f"{spec.type} check has no path")
    common = {"message": spec.message, "fallback_paths": tuple(spec.fallback_paths)}

    if kind is CheckKind.REGEX_MATCH:
        if spec.pattern is None:
            raise _SkipCheck("regex check has no pattern")
        return Check(kind, spec.path, pattern=_valid_pattern(spec.pattern),
                     ignore_case=spec.ignore_case, **common)
    if kind is CheckKind.VALUE_IN_ALLOWED_SET:
        if spec.values is None:
            raise _SkipCheck("allowedValues check has no values")
        if spec.normalize is not None and spec.normalize not in NORMALIZERS:
            raise _SkipCheck(f"unknown normalizer {spec.normalize!r}")
        return Check(kind, spec.path, values=tuple(spec.values), ignore_case=spec.ignore_case,
                     normalize=spec.normalize, **common)
    if kind is CheckKind.REQUIRED_KEYS_PRESENT:
        if spec.keys is None:
            raise _SkipCheck("requiredTags check has no keys")
        return Check(kind, spec.path, keys=tuple(spec.keys), **common)
    if kind in (CheckKind.EQUALS, CheckKind.NOT_EQUALS):
        if "value" not in spec.model_fields_set:
            raise _SkipCheck(f"{spec.type} check has no value")
        return Check(kind, spec.path, expected=spec.value, **common)
    return Check(kind, spec.path, **common)



def target_from_spec(spec: TargetSpec) -> RuleTarget:
    try:
        return RuleTarget(action_name=spec.tool, namespace_prefix=spec.prefix)
    except ValueError as e:
        raise _SkipCheck(str(e)) from e


class RuleCompiler:
    """Compile a PolicyDocument into Rules; advisory problems land in warnings."""

    def __init__(self, ato_profile: str = "") -> None:
        self.ato_profile = ato_profile
        self.warnings: list[str] = []

    def compile(self, doc: PolicyDocument) -> list[Rule]:
        self.warnings = []
        rules: list[Rule] = []

        for namespace, policy_set in doc.provider_sections().items():
            for action_kind in type(policy_set).model_fields:
                section = getattr(policy_set, action_kind)
                if section is not None:
                    rules.extend(self._compile_section(namespace, action_kind, section))

        for raw in doc.policies:
            rules.append(self._compile_hard(raw))

        if doc.ato is not None:
            rules.extend(self._compile_ato(doc.ato, doc.active_profile(self.ato_profile)))

        logger.debug("Compiled %d rules", len(rules))
        return rules

    def _warn(self, message: str) -> None:
        logger.warning("Skipping advisory entry: %s", message)
        self.warnings.append(message)

    # ── provider sections ───────────────────────────────────────────────

    def _compile_section(
        self, namespace: str, action_kind: str, section: PolicyModel
    ) -> list[Rule]:
        action = f"{namespace}.{action_kind}"
        target = RuleTarget(action_name=action)
        controls = tuple(getattr(section, "controls", ()) or ())
        rules: list[Rule] = []

        for intent in SECTION_INTENTS.get(type(section), []):
            value = getattr(section, intent.field, None)
            if value is None:
                continue
            try:
                checks = intent.build(value)
            except _SkipCheck as e:
                raise ConfigParseError(
                    f"{action}.{intent.field}: {e}", errors=[f"$.{action}.{intent.field}: {e}"]
                ) from None
            if not checks:
                continue
            rules.append(Rule(
                id=f"{action}.{intent.suffix}",
                description=intent.description,
                target=target,
                effect=intent.effect,
                checks=checks,
                controls=controls,
            ))

        for suffix, description, suggestion in _suggestions(section):
            rules.append(Rule(
                id=f"{action}.{suffix}",
                description=description,
                target=target,
                effect=Effect.WARN,
                suggestions=(suggestion,),
                controls=controls,
            ))
        return rules

    # ── raw policies ────────────────────────────────────────────────────

    @staticmethod
    def _suggestion_of(raw: RawPolicy) -> tuple[Suggestion, ...]:
        if raw.suggest is None:
            return ()
        if isinstance(raw.suggest, str):
            return (Suggestion(text=raw.suggest),)
        return (Suggestion(text=raw.suggest.text, title=raw.suggest.title,
                           proposed_fix=raw.suggest.fix),)

    def _compile_hard(self, raw: RawPolicy) -> Rule:
        try:
            target = target_from_spec(raw.target)
            checks = tuple(check_from_spec(c) for c in raw.checks)
        except _SkipCheck as e:
            raise ConfigParseError(
                f"policy {raw.id}: {e}", errors=[f"$.policies[{raw.id}]: {e}"]
            ) from None
        return Rule(
            id=raw.id,
            description=raw.description or raw.id,
            target=target,
            effect=Effect(raw.effect),
            checks=checks,
            suggestions=self._suggestion_of(raw),
            controls=tuple(raw.controls),
        )

    def _lenient_checks(self, owner: str, specs: list[CheckSpec]) -> tuple[Check, ...]:
        checks = []
        for spec in specs:
            try:
                checks.append(check_from_spec(spec))
            except _SkipCheck as e:
                self._warn(f"{owner}: {e}")
        return tuple(checks)

    # ── advisory (ATO) ──────────────────────────────────────────────────

    def _compile_ato(self, ato: AtoSection, profile_name: str) -> list[Rule]:
        rules: list[Rule] = []
        profile = ato.profiles.get(profile_name)
        if profile is None and ato.profiles:
            self._warn(f"ato profile '{profile_name}' not found")

        for domain_name, domain in (profile or {}).items():
            owner = f"ato.{profile_name}.{domain_name}"
            if domain.target is not None:
                try:
                    target = target_from_spec(domain.target)
                except _SkipCheck as e:
                    self._warn(f"{owner}: {e}")
                    continue
            elif domain_name in DEFAULT_DOMAIN_TARGETS:
                target = RuleTarget(action_name=DEFAULT_DOMAIN_TARGETS[domain_name])
            else:
                self._warn(f"{owner}: no target for domain")
                continue

            for code, entry in domain.rules.items():
                rule_id = f"{owner}.{code}"
                checks = self._lenient_checks(rule_id, entry.checks)
                if not checks:
                    logger.debug("Advisory rule %s has no usable checks", rule_id)
                    continue
                suggestions = ()
                if entry.suggest:
                    suggestions = (Suggestion(text=entry.suggest, title=entry.title or code,
                                              proposed_fix=entry.fix),)
                rules.append(Rule(
                    id=rule_id,
                    description=entry.title or code,
                    target=target,
                    effect=Effect.WARN,
                    checks=checks,
                    suggestions=suggestions,
                    controls=tuple(entry.controls),
                ))

        for raw in ato.policies:
            try:
                target = target_from_spec(raw.target)
            except _SkipCheck as e:
                self._warn(f"{raw.id}: {e}")
                continue
            checks = self._lenient_checks(raw.id, raw.checks)
            if not checks:
                continue
            rules.append(Rule(
                id=raw.id,
                description=raw.description or raw.id,
                target=target,
                effect=Effect.WARN,
                checks=checks,
                suggestions=self._suggestion_of(raw),
                controls=tuple(raw.controls),
            ))
        return rules


def compile_rules(doc: PolicyDocument, ato_profile: str = "") -> list[Rule]:
    """Convenience wrapper around RuleCompiler.compile."""
    return RuleCompiler(ato_profile=ato_profile).compile(doc)
