# rpgforge/content/models.py
from __future__ import annotations
from typing import Any, Literal
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from rpgforge.core.errors import RpgForgeError

__all__ = [
    "PackKind", "PackSource", "StackingPolicy", "ModifierTarget", "ModifierOperation", "TriggerKind",
    "HookBinding", "PackValidationError",
    "DependencySpec", "PackEntrypoints", "PackManifest",
    "ContentId", "ContentEntry",
    "ModelStat", "ModelResource", "ModelCollection", "ModelFlag", "ModelBlock", "ModelSection",
    "RulesBlock", "UiGroup", "UiLayout", "UiPanel", "UiAccents", "UiPreset", "ActionSpec",
    "CreatorOptionItem", "CreatorOptionSource", "CreatorWarningPolicy", "CreatorRule",
    "CreatorRollConfig", "CreatorField", "CreatorStep", "CreatorPreset",
    "AuthoringField", "AuthoringTemplate", "AuthoringForm", "AuthoringPreset",
    "EffectTrigger", "Modifier", "EffectDuration", "EffectSpec",
    "PackModule", "LoadedPack", "RulesetConflict", "ResolvedModel", "ResolvedRuleset",
    "parsePackManifest", "parsePackModule", "parseUiPreset", "parseContentEntries", "parseCreatorPreset",
]



PackKind = Literal["core", "addon"]
PackSource = Literal["builtin", "import", "overlay"]
StackingPolicy = Literal["replace", "sum", "max", "exclusive"]
ModifierTarget = Literal["stat", "resource_max", "derived"]
ModifierOperation = Literal["add", "set", "max", "min", "multiply"]
TriggerKind = Literal["always", "equipped", "flag", "manual", "on_rest", "on_level_change", "on_action"]
HookBinding = Literal["builtin:clamp", "builtin:min", "builtin:max", "builtin:sum", "builtin:count"]

_SEMVER_PATTERN = r"^\d+\.\d+\.\d+$"



class PackValidationError(RpgForgeError, ValueError):
    """A pack document failed schema validation. Message names the first failing path."""
    def __init__(self, message: str, *, what: str = "document", path: str = "(root)") -> None:
        super().__init__(f"Invalid {what}: {message} at {path}")
        self.what = what
        self.path = path



class _Doc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def toDict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)



# ------------------------------------------------------------------ #
#                              Manifest
# ------------------------------------------------------------------ #

class DependencySpec(_Doc):
    id: str = Field(min_length=1)
    range: str = Field(min_length=1)
    optional: bool | None = None



class PackEntrypoints(_Doc):
    """Logical sub-documents of a pack, as paths relative to the manifest."""
    model: str | None = None
    rules: str | None = None
    content: list[str] | None = None
    ui: str | None = None
    actions: str | None = None
    creator: str | None = None
    authoring: str | None = None
    effects: str | None = None



class PackManifest(_Doc):
    schemaVersion: Literal["2.0.0"]
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    version: str = Field(pattern=_SEMVER_PATTERN)
    kind: PackKind
    description: str | None = None
    sourceLicense: str | None = None
    sourceUrl: str | None = Field(default=None, pattern=r"^[A-Za-z][A-Za-z0-9+.-]*://\S+$")
    dependsOn: list[DependencySpec] | None = None
    entrypoints: PackEntrypoints = Field(default_factory=PackEntrypoints)



# ------------------------------------------------------------------ #
#                         Content and model
# ------------------------------------------------------------------ #

class ContentId(_Doc):
    namespace: str = Field(min_length=1)
    type: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    revision: str | None = None



class ContentEntry(_Doc):
    id: str = Field(min_length=1)
    contentId: ContentId
    title: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    mergePolicy: Literal["replace", "deep_merge"] | None = None



class ModelStat(_Doc):
    id: str = Field(min_length=1)
    label: str | None = None
    default: float | int | None = None



class ModelResource(_Doc):
    id: str = Field(min_length=1)
    label: str | None = None
    default: float | int | None = None
    maxFormula: str | None = None



class ModelCollection(_Doc):
    id: str = Field(min_length=1)
    label: str | None = None
    itemType: str | None = None



class ModelFlag(_Doc):
    id: str = Field(min_length=1)
    label: str | None = None
    default: bool | None = None



class ModelBlock(_Doc):
    stats: list[ModelStat] | None = None
    resources: list[ModelResource] | None = None
    collections: list[ModelCollection] | None = None
    flags: list[ModelFlag] | None = None



class ModelSection(_Doc):
    core: ModelBlock | None = None
    extends: ModelBlock | None = None



class RulesBlock(_Doc):
    formulas: dict[str, str] | None = None
    lookups: dict[str, dict[str, float | int]] | None = None
    hooks: dict[str, HookBinding] | None = None



# ------------------------------------------------------------------ #
#                             UI / actions
# ------------------------------------------------------------------ #

class UiGroup(_Doc):
    id: str = Field(min_length=1)
    title: str | None = None
    tabs: list[str] = Field(default_factory=list)



class UiLayout(_Doc):
    groups: list[UiGroup] = Field(default_factory=list)



class UiPanel(_Doc):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    section: str = Field(min_length=1)
    priority: int | None = None
    collapsible: bool | None = None
    density: Literal["compact", "cozy"] | None = None
    className: str | None = None
    elements: list[Any] | None = None



class UiAccents(_Doc):
    primary: str | None = None
    secondary: str | None = None
    surfaceTint: str | None = None



class UiPreset(_Doc):
    layout: UiLayout = Field(default_factory=UiLayout)
    panels: list[UiPanel] = Field(default_factory=list)
    accents: UiAccents | None = None



class ActionSpec(_Doc):
    id: str = Field(min_length=1)
    kind: Literal["domain", "script", "roll", "toggle"]
    target: str = Field(min_length=1)
    args: list[Any] | None = None



# ------------------------------------------------------------------ #
#                               Effects
# ------------------------------------------------------------------ #

class EffectTrigger(_Doc):
    kind: TriggerKind
    key: str | None = None
    equals: str | bool | int | float | None = None
    actionId: str | None = None



class Modifier(_Doc):
    id: str | None = None
    target: ModifierTarget
    key: str = Field(min_length=1)
    operation: ModifierOperation | None = None
    value: float | int | None = None
    formula: str | None = None
    stacking: StackingPolicy | None = None

    @model_validator(mode="after")
    def requireValueOrFormula(self):
        if self.value is None and self.formula is None:
            raise ValueError("modifier requires value or formula")
        return self



class EffectDuration(_Doc):
    type: Literal["instant", "while_equipped", "until_rest", "timed"]
    value: float | int | None = None
    unit: Literal["round", "minute", "hour"] | None = None



class EffectSpec(_Doc):
    id: str = Field(min_length=1)
    label: str | None = None
    modifiers: list[Modifier] = Field(min_length=1)
    triggers: list[EffectTrigger] | None = None
    duration: EffectDuration | None = None
    stacking: StackingPolicy | None = None



# ------------------------------------------------------------------ #
#                      Creator / authoring presets
# ------------------------------------------------------------------ #

class CreatorOptionItem(_Doc):
    value: str = Field(min_length=1)
    label: str = Field(min_length=1)
    meta: dict[str, Any] | None = None



class CreatorOptionSource(_Doc):
    kind: Literal["static", "content", "lookup", "expression"]
    values: list[CreatorOptionItem] | None = None
    contentType: str | None = None
    query: str | None = None
    lookupTable: str | None = None
    expression: str | None = None
    valuePath: str | None = None
    labelPath: str | None = None



class CreatorWarningPolicy(_Doc):
    id: str = Field(min_length=1)
    title: str | None = None
    message: str = Field(min_length=1)
    confirmLabel: str | None = None
    cancelLabel: str | None = None



class CreatorRule(_Doc):
    id: str = Field(min_length=1)
    severity: Literal["error", "warning"]
    when: str = Field(min_length=1)
    message: str = Field(min_length=1)
    overridePolicy: CreatorWarningPolicy | None = None



class CreatorReroll(_Doc):
    equals: float | int | None = None
    lt: float | int | None = None
    maxRerolls: int | None = Field(default=None, ge=0)



class CreatorRollConfig(_Doc):
    expression: str = Field(min_length=1)
    count: int = Field(ge=1)
    dropLowest: int | None = Field(default=None, ge=0)
    reroll: CreatorReroll | None = None
    assignment: Literal["manual", "auto_desc"] | None = None



class CreatorVisibility(_Doc):
    expression: str = Field(min_length=1)



class CreatorOutput(_Doc):
    path: str = Field(min_length=1)
    mode: Literal["set", "append", "merge"] | None = None



class CreatorField(_Doc):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    type: Literal["text", "number", "select", "multiSelect", "toggle", "roller", "tablePick", "repeatGroup"]
    bindTo: str | None = None
    required: bool | None = None
    default: Any = None
    helpText: str | None = None
    options: CreatorOptionSource | None = None
    visibleWhen: CreatorVisibility | None = None
    rules: list[CreatorRule] | None = None
    output: CreatorOutput | None = None
    roller: CreatorRollConfig | None = None
    # repeatGroup children
    fields: list[CreatorField] | None = None



class CreatorStep(_Doc):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str | None = None
    fields: list[CreatorField] = Field(default_factory=list)
    preloadContentTypes: list[str] | None = None
    searchContentTypes: list[str] | None = None
    rules: list[CreatorRule] | None = None



class CreatorPreset(_Doc):
    schemaVersion: Literal["3.0.0"]
    title: str | None = None
    description: str | None = None
    steps: list[CreatorStep] = Field(default_factory=list)
    rules: list[CreatorRule] | None = None



class AuthoringField(_Doc):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    type: Literal["text", "number", "boolean", "json"]
    required: bool | None = None
    default: Any = None



class AuthoringTemplate(_Doc):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    contentType: str = Field(min_length=1)
    collectionId: str | None = None
    defaults: dict[str, Any] | None = None
    effects: list[EffectSpec] | None = None



class AuthoringForm(_Doc):
    id: str = Field(min_length=1)
    contentType: str = Field(min_length=1)
    title: str | None = None
    fields: list[AuthoringField] = Field(default_factory=list)



class AuthoringPreset(_Doc):
    enabled: bool | None = None
    contentTypes: list[str] | None = None
    templates: list[AuthoringTemplate] | None = None
    forms: list[AuthoringForm] | None = None



# ------------------------------------------------------------------ #
#                         Module / loaded pack
# ------------------------------------------------------------------ #

class PackModule(_Doc):
    model: ModelSection | None = None
    rules: RulesBlock | None = None
    content: dict[str, list[ContentEntry]] | None = None
    ui: UiPreset | None = None
    actions: list[ActionSpec] | None = None
    creator: CreatorPreset | None = None
    authoring: AuthoringPreset | None = None
    effects: list[EffectSpec] | None = None



class LoadedPack(_Doc):
    manifest: PackManifest
    module: PackModule = Field(default_factory=PackModule)
    source: PackSource = "builtin"
    sourceRef: str = ""

    @property
    def id(self) -> str:
        return self.manifest.id

    @property
    def version(self) -> str:
        return self.manifest.version



# ------------------------------------------------------------------ #
#                           Resolved ruleset
# ------------------------------------------------------------------ #

class RulesetConflict(_Doc):
    id: str
    contentType: str
    previousPackId: str
    nextPackId: str
    resolution: Literal["overridden"] = "overridden"
    path: str | None = None



class ResolvedModel(_Doc):
    core: ModelBlock = Field(default_factory=lambda: ModelBlock(stats=[], resources=[], collections=[], flags=[]))
    extensions: list[ModelBlock] = Field(default_factory=list)

    def stats(self) -> list[ModelStat]:
        return list(self.core.stats or [])

    def resources(self) -> list[ModelResource]:
        return list(self.core.resources or [])

    def collections(self) -> list[ModelCollection]:
        return list(self.core.collections or [])

    def flags(self) -> list[ModelFlag]:
        return list(self.core.flags or [])



class ResolvedRuleset(_Doc):
    id: str
    packOrder: list[str]
    manifests: list[PackManifest] = Field(default_factory=list)
    model: ResolvedModel = Field(default_factory=ResolvedModel)
    rules: RulesBlock = Field(default_factory=lambda: RulesBlock(formulas={}, lookups={}, hooks={}))
    ui: UiPreset = Field(default_factory=UiPreset)
    actions: dict[str, ActionSpec] = Field(default_factory=dict)
    content: dict[str, dict[str, ContentEntry]] = Field(default_factory=dict)
    creator: CreatorPreset | None = None
    authoring: AuthoringPreset | None = None
    effects: list[EffectSpec] = Field(default_factory=list)
    conflicts: list[RulesetConflict] = Field(default_factory=list)

    @property
    def formulas(self) -> dict[str, str]:
        return self.rules.formulas or {}

    @property
    def lookups(self) -> dict[str, dict[str, float | int]]:
        return self.rules.lookups or {}

    @property
    def hooks(self) -> dict[str, HookBinding]:
        return self.rules.hooks or {}

    def getContent(self, contentType: str, entryId: str) -> ContentEntry | None:
        return self.content.get(contentType, {}).get(entryId)



CreatorField.model_rebuild()



# ------------------------------------------------------------------ #
#                               Parsing
# ------------------------------------------------------------------ #

def _firstIssue(err: ValidationError) -> tuple[str, str]:
    issues = err.errors()
    if not issues:
        return "validation failed", "(root)"
    issue = issues[0]
    path = ".".join(str(part) for part in issue.get("loc", ())) or "(root)"
    message = str(issue.get("msg") or "validation failed")
    # pydantic prefixes custom validator messages
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return message, path



def _parse(model: type[_Doc], data: Any, what: str):
    if isinstance(data, model):
        return data
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise PackValidationError(f"expected an object, got {type(data).__name__}", what=what)
    try:
        return model.model_validate(dict(data))
    except ValidationError as err:
        message, path = _firstIssue(err)
        raise PackValidationError(message, what=what, path=path) from err



def parsePackManifest(data: Any) -> PackManifest:
    return _parse(PackManifest, data, "manifest")



def parsePackModule(data: Any) -> PackModule:
    return _parse(PackModule, data, "module")



def parseUiPreset(data: Any) -> UiPreset:
    return _parse(UiPreset, data, "ui preset")



def parseCreatorPreset(data: Any) -> CreatorPreset:
    return _parse(CreatorPreset, data, "creator preset")



def parseContentEntries(data: Any) -> list[ContentEntry]:
    if not isinstance(data, list):
        raise PackValidationError(f"expected a list, got {type(data).__name__}", what="content entries")
    entries: list[ContentEntry] = []
    for index, item in enumerate(data):
        try:
            entries.append(ContentEntry.model_validate(item))
        except ValidationError as err:
            message, path = _firstIssue(err)
            raise PackValidationError(message, what="content entries", path=f"{index}.{path}") from err
    return entries
