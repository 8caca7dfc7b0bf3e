import re
import time
import logging
from typing import List, Dict, Any, Optional, Callable, Tuple, Union, Literal, Annotated

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

logger = logging.getLogger(__name__)

RULE_TYPES = (
    "coRun", "slotRestriction", "loadLimit",
    "phaseWindow", "patternMatch", "precedenceOverride",
)


# --------- Rule configs (one shape per rule type) ---------
class _Config(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CoRunConfig(_Config):
    task_ids: List[str] = Field(default_factory=list, alias="taskIDs")


class SlotRestrictionConfig(_Config):
    group_type: Literal["client", "worker"] = Field(default="client", alias="groupType")
    group_name: str = Field(default="", alias="groupName")
    min_common_slots: int = Field(default=1, alias="minCommonSlots")


class LoadLimitConfig(_Config):
    worker_group: str = Field(default="", alias="workerGroup")
    max_slots_per_phase: int = Field(default=1, alias="maxSlotsPerPhase")


class PhaseWindowConfig(_Config):
    task_id: str = Field(default="", alias="taskID")
    allowed_phases: List[int] = Field(default_factory=list, alias="allowedPhases")


class PatternMatchConfig(_Config):
    regex: str = ""
    rule_template: str = Field(default="default", alias="ruleTemplate")
    parameters: Dict[str, Any] = Field(default_factory=dict)


class PrecedenceOverrideConfig(_Config):
    global_rules: List[str] = Field(default_factory=list, alias="globalRules")
    specific_rules: List[str] = Field(default_factory=list, alias="specificRules")


# --------- Business rules ---------
class _RuleBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    description: str = ""
    enabled: bool = True
    priority: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class CoRunRule(_RuleBase):
    type: Literal["coRun"] = "coRun"
    config: CoRunConfig = Field(default_factory=CoRunConfig)


class SlotRestrictionRule(_RuleBase):
    type: Literal["slotRestriction"] = "slotRestriction"
    config: SlotRestrictionConfig = Field(default_factory=SlotRestrictionConfig)


class LoadLimitRule(_RuleBase):
    type: Literal["loadLimit"] = "loadLimit"
    config: LoadLimitConfig = Field(default_factory=LoadLimitConfig)


class PhaseWindowRule(_RuleBase):
    type: Literal["phaseWindow"] = "phaseWindow"
    config: PhaseWindowConfig = Field(default_factory=PhaseWindowConfig)


class PatternMatchRule(_RuleBase):
    type: Literal["patternMatch"] = "patternMatch"
    config: PatternMatchConfig = Field(default_factory=PatternMatchConfig)


class PrecedenceOverrideRule(_RuleBase):
    type: Literal["precedenceOverride"] = "precedenceOverride"
    config: PrecedenceOverrideConfig = Field(default_factory=PrecedenceOverrideConfig)


BusinessRule = Annotated[
    Union[
        CoRunRule,
        SlotRestrictionRule,
        LoadLimitRule,
        PhaseWindowRule,
        PatternMatchRule,
        PrecedenceOverrideRule,
    ],
    Field(discriminator="type"),
]

_rule_adapter = TypeAdapter(BusinessRule)


def parse_rule(data: Dict[str, Any]) -> BusinessRule:
    """Build a typed rule from its exported dict shape; raises pydantic.ValidationError."""
    return _rule_adapter.validate_python(data)


_last_rule_id = 0


def new_rule_id() -> str:
    """Millisecond wall-clock id, bumped when two rules land in the same millisecond."""
    global _last_rule_id
    candidate = int(time.time() * 1000)
    if candidate <= _last_rule_id:
        candidate = _last_rule_id + 1
    _last_rule_id = candidate
    return str(candidate)


# --------- Business Rule Store ---------
class RuleNotFoundError(KeyError):
    def __init__(self, rule_id: str):
        super().__init__(rule_id)
        self.rule_id = rule_id

    def __str__(self):
        return f"Rule not found: {self.rule_id}"


class RuleStore:
    """Holds the rule collection; every mutation rebinds a fresh tuple."""

    def __init__(self, rules=None):
        self._rules: Tuple[BusinessRule, ...] = tuple(rules or ())

    def __len__(self):
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)

    def list_rules(self) -> List[BusinessRule]:
        return list(self._rules)

    def get(self, rule_id: str) -> BusinessRule:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        raise RuleNotFoundError(rule_id)

    def add(self, rule: BusinessRule) -> BusinessRule:
        self._rules = self._rules + (rule,)
        logger.info("Added %s rule %s (%s)", rule.type, rule.id, rule.name)
        return rule

    def update(self, rule_id: str, updates: Dict[str, Any]) -> BusinessRule:
        current = self.get(rule_id)
        merged = current.to_dict()
        merged.update(updates)
        merged["id"] = rule_id
        # Switching type without a new config resets config to the new type's defaults
        if merged.get("type") != current.type and "config" not in updates:
            merged.pop("config", None)
        updated = parse_rule(merged)
        self._rules = tuple(updated if rule.id == rule_id else rule for rule in self._rules)
        return updated

    def toggle(self, rule_id: str, enabled: Optional[bool] = None) -> BusinessRule:
        current = self.get(rule_id)
        return self.update(rule_id, {"enabled": (not current.enabled) if enabled is None else enabled})

    def remove(self, rule_id: str) -> None:
        self.get(rule_id)
        self._rules = tuple(rule for rule in self._rules if rule.id != rule_id)
        logger.info("Removed rule %s", rule_id)

    def replace_all(self, rules) -> None:
        self._rules = tuple(rules)

    def to_list(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self._rules]


# --------- Rule Phrase Interpreter ---------
PARSE_FAILURE_MESSAGE = "Could not parse rule from natural language. Please try a different format."

RULE_SUGGESTIONS = [
    "Try: 'Tasks T1 and T2 must run together'",
    "Try: 'Limit Senior workers to 3 slots per phase'",
    "Try: 'Task T3 can only run in phases 1-3'",
    "Try: 'VIP clients need minimum 2 common slots'",
]


class InterpretationResult:
    def __init__(self, rule: Optional[BusinessRule] = None, message: str = "", suggestions: List[str] = None):
        self.rule = rule
        self.message = message
        self.suggestions = list(suggestions or [])

    @property
    def success(self) -> bool:
        return self.rule is not None

    def to_dict(self):
        if self.success:
            return {"success": True, "rule": self.rule.to_dict(), "message": self.message}
        return {"success": False, "message": self.message, "suggestions": list(self.suggestions)}


MAX_PHASE_SPAN = 1000


def _contains_any(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


def _leading_int(text: str) -> Optional[int]:
    match = re.match(r"\s*([+-]?\d+)", text)
    return int(match.group(1)) if match else None


def parse_phase_text(text: str) -> List[int]:
    """Expand "1-3" into [1, 2, 3]; otherwise keep the numeric tokens of a list.

    Ranges wider than MAX_PHASE_SPAN phases are treated as unparseable.
    """
    if "-" in text:
        parts = text.split("-")
        start, end = _leading_int(parts[0]), _leading_int(parts[1])
        if start is None or end is None or end - start >= MAX_PHASE_SPAN:
            return []
        return list(range(start, end + 1))

    phases = []
    for token in re.split(r"[,\s]+", text):
        value = _leading_int(token) if token else None
        if value is not None:
            phases.append(value)
    return phases


def _extract_task_ids(prompt: str) -> List[str]:
    task_ids = []
    for segment in re.findall(r"tasks?\s+([A-Za-z0-9,\s]+)", prompt, re.IGNORECASE):
        # Only tokens shaped like IDs ("T1", "t12", "42") count; filler words are dropped
        for token in re.findall(r"\b[A-Za-z]*\d+[A-Za-z0-9]*\b", segment):
            task_id = token.upper()
            if task_id not in task_ids:
                task_ids.append(task_id)
    return task_ids


def _first_group(patterns, prompt: str) -> Optional[str]:
    for pattern in patterns:
        match = re.search(pattern, prompt, re.IGNORECASE)
        if match:
            return match.group(1)
    return None


def _is_co_run(lower: str) -> bool:
    return _contains_any(lower, ("run together", "co-run", "concurrent"))


def _extract_co_run(prompt: str) -> Optional[BusinessRule]:
    task_ids = _extract_task_ids(prompt)
    if not task_ids:
        return None
    joined = ", ".join(task_ids)
    return CoRunRule(
        id=new_rule_id(),
        name=f"Co-run {joined}",
        description=f"Tasks {joined} must run together",
        priority=5,
        config=CoRunConfig(task_ids=task_ids),
    )


def _is_load_limit(lower: str) -> bool:
    return _contains_any(lower, ("load limit", "max load", "workload", "limit"))


def _extract_load_limit(prompt: str) -> Optional[BusinessRule]:
    worker_group = _first_group(
        [r"(?:worker group|group)\s+([A-Za-z]+)", r"limit\s+([A-Za-z]+)\s+workers?\b"], prompt
    )
    max_load = _first_group([r"(\d+)\s*(?:slots?|tasks?|load)"], prompt)
    if not worker_group or not max_load:
        return None
    max_load = int(max_load)
    return LoadLimitRule(
        id=new_rule_id(),
        name=f"Load Limit for {worker_group}",
        description=f"Limit {worker_group} workers to {max_load} slots per phase",
        priority=4,
        config=LoadLimitConfig(worker_group=worker_group, max_slots_per_phase=max_load),
    )


def _is_phase_window(lower: str) -> bool:
    return "phase" in lower and _contains_any(lower, ("window", "allowed", "restrict", "only"))


def _extract_phase_window(prompt: str) -> Optional[BusinessRule]:
    task_id = _first_group([r"tasks?\s+([A-Za-z]*\d[A-Za-z0-9]*)"], prompt)
    phase_text = _first_group([r"phases?\s*(\d[\d,\-\s]*)"], prompt)
    if not task_id or not phase_text:
        return None
    allowed_phases = parse_phase_text(phase_text)
    if not allowed_phases:
        return None
    task_id = task_id.upper()
    return PhaseWindowRule(
        id=new_rule_id(),
        name=f"Phase Window for {task_id}",
        description=f"Task {task_id} can only run in phases {', '.join(str(p) for p in allowed_phases)}",
        priority=3,
        config=PhaseWindowConfig(task_id=task_id, allowed_phases=allowed_phases),
    )


def _is_slot_restriction(lower: str) -> bool:
    return "slot" in lower and _contains_any(lower, ("restriction", "common", "minimum"))


def _extract_slot_restriction(prompt: str) -> Optional[BusinessRule]:
    group_name = _first_group(
        [r"(?:client group|worker group|group)\s+([A-Za-z]+)", r"\b([A-Za-z]+)\s+(?:clients?|workers?)\b"],
        prompt,
    )
    min_slots = _first_group([r"(\d+)\s*(?:common slots?|minimum)"], prompt)
    if not group_name or not min_slots:
        return None
    min_slots = int(min_slots)
    group_type = "client" if "client" in prompt.lower() else "worker"
    return SlotRestrictionRule(
        id=new_rule_id(),
        name=f"Slot Restriction for {group_name}",
        description=f"{group_type} group {group_name} requires minimum {min_slots} common slots",
        priority=4,
        config=SlotRestrictionConfig(group_type=group_type, group_name=group_name, min_common_slots=min_slots),
    )


def _is_pattern_match(lower: str) -> bool:
    return _contains_any(lower, ("pattern", "regex", "match"))


def _extract_pattern_match(prompt: str) -> Optional[BusinessRule]:
    regex = _first_group([r"(?:regex|pattern)\s+(\S+)"], prompt)
    if not regex:
        return None
    template = _first_group([r"(?:template|rule)\s+([A-Za-z]+)"], prompt) or "default"
    return PatternMatchRule(
        id=new_rule_id(),
        name=f"Pattern Match: {regex}",
        description=f"Apply pattern matching with regex {regex}",
        priority=2,
        config=PatternMatchConfig(regex=regex, rule_template=template),
    )


def _is_precedence_override(lower: str) -> bool:
    return _contains_any(lower, ("precedence", "priority", "override"))


def _extract_precedence_override(prompt: str) -> Optional[BusinessRule]:
    rules_text = _first_group([r"(?:global rules?|rules?)\s+([A-Za-z,\s]+)"], prompt)
    if not rules_text:
        return None
    global_rules = [name for name in re.split(r"[,\s]+", rules_text) if name.strip()]
    if not global_rules:
        return None
    return PrecedenceOverrideRule(
        id=new_rule_id(),
        name="Precedence Override",
        description=f"Override precedence with global rules: {', '.join(global_rules)}",
        priority=1,
        config=PrecedenceOverrideConfig(global_rules=global_rules),
    )


# Evaluated in order; the first matching predicate owns the prompt
RULE_MATCHERS: List[Tuple[str, Callable[[str], bool], Callable[[str], Optional[BusinessRule]]]] = [
    ("coRun", _is_co_run, _extract_co_run),
    ("loadLimit", _is_load_limit, _extract_load_limit),
    ("phaseWindow", _is_phase_window, _extract_phase_window),
    ("slotRestriction", _is_slot_restriction, _extract_slot_restriction),
    ("patternMatch", _is_pattern_match, _extract_pattern_match),
    ("precedenceOverride", _is_precedence_override, _extract_precedence_override),
]


def classify_rule_phrase(prompt: str) -> Optional[str]:
    lower = prompt.lower()
    for rule_type, predicate, _ in RULE_MATCHERS:
        if predicate(lower):
            return rule_type
    return None


def interpret_rule_phrase(prompt: str) -> InterpretationResult:
    """Translate a free-text instruction into one candidate business rule."""
    lower = (prompt or "").lower()
    rule = None
    for rule_type, predicate, extractor in RULE_MATCHERS:
        if predicate(lower):
            rule = extractor(prompt)
            if rule is None:
                logger.info("Phrase matched %s keywords but parameters could not be extracted", rule_type)
            break

    if rule is None:
        return InterpretationResult(message=PARSE_FAILURE_MESSAGE, suggestions=RULE_SUGGESTIONS)

    logger.info("Generated rule: %s", rule.to_dict())
    return InterpretationResult(rule=rule, message="Rule generated successfully")
