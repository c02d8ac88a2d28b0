"""Chain Model and Chain Stepper

A chain is an ordered list of agent steps. ``ChainStepper.advance`` moves a
``ChainExecution`` forward by exactly one step and is called repeatedly
(by ``drive_chain`` or a poller) until the execution is terminal:

    running -> running (next step) -> completed | failed

Per step:
1. Evaluate the step condition against the chain state document; a false
   condition skips the step (no invocation) and still advances.
2. Resolve ``inputMapping`` against the chain state document.
3. Invoke the agent under the step timeout; a failed or timed-out attempt
   is retried up to ``retryCount`` more times.
4. Apply ``outputMapping`` into ``variables`` and advance.

Prior step outcomes are kept when a later step fails.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..errors import (
    AgentInvocationError,
    SafeEvalError,
    StepTimeoutError,
    ValidationIssue,
    error_kind_of,
)
from ..settings import (
    CHAIN_RETRY_BASE_DELAY,
    CHAIN_RETRY_MAX_DELAY,
    CHAIN_STEP_DEFAULT_TIMEOUT_MS,
    CHAIN_STEP_MAX_TIMEOUT_MS,
)
from .graph_builder import ValidationResult
from .paths import is_path, resolve_path
from .safe_eval import eval_condition, safe_eval, validate_condition_expression

logger = logging.getLogger(__name__)

# Execution statuses
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATUSES = (COMPLETED, FAILED)

# Step outcome statuses
STEP_COMPLETED = "completed"
STEP_SKIPPED = "skipped"
STEP_FAILED = "failed"

# Structured condition types
CONDITION_ALWAYS = "always"
CONDITION_IF_SUCCESS = "if_success"
CONDITION_IF_ERROR = "if_error"
CONDITION_CUSTOM = "custom"
CONDITION_TYPES = (CONDITION_ALWAYS, CONDITION_IF_SUCCESS, CONDITION_IF_ERROR, CONDITION_CUSTOM)

# Top-level keys of the chain state document that step ids may not shadow
RESERVED_STATE_KEYS = ("input", "variables", "previous_step", "stepResults")

# Legacy ``timeout`` values up to this bound are seconds, larger ones milliseconds
_LEGACY_TIMEOUT_SECONDS_BOUND = 3600

# Unprefixed mapping values read from the state document
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_STEP_RESULT_FORM = re.compile(r"^stepResults\[\d+\](?:\.[A-Za-z_][A-Za-z0-9_]*)+$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _timeout_ms(raw: Dict[str, Any]) -> int:
    if raw.get("timeoutMs") is not None:
        value = float(raw["timeoutMs"])
    elif raw.get("timeout") is not None:
        value = float(raw["timeout"])
        if value <= _LEGACY_TIMEOUT_SECONDS_BOUND:
            value *= 1000
    else:
        value = CHAIN_STEP_DEFAULT_TIMEOUT_MS
    return int(min(value, CHAIN_STEP_MAX_TIMEOUT_MS))


@dataclass
class ChainStep:
    """One stage of a chain.

    Attributes:
        id: Step identifier, unique within the chain
        name: Display name
        agent_ref: Agent to invoke
        condition: Expression string, structured ``{type, expression}`` dict, or None
        input_mapping: local key -> path expression or constant
        output_mapping: local key -> path expression or constant
        timeout_ms: Per-attempt timeout
        retry_count: Additional attempts after the first failure
        continue_on_error: Record a failure and keep going instead of halting
    """

    id: str
    name: str
    agent_ref: str
    condition: Union[str, Dict[str, Any], None] = None
    input_mapping: Optional[Dict[str, Any]] = None
    output_mapping: Optional[Dict[str, Any]] = None
    timeout_ms: int = CHAIN_STEP_DEFAULT_TIMEOUT_MS
    retry_count: int = 0
    continue_on_error: bool = False
    description: str = ""

    @property
    def condition_type(self) -> str:
        if isinstance(self.condition, dict):
            return str(self.condition.get("type") or CONDITION_ALWAYS)
        if self.condition:
            return CONDITION_CUSTOM
        return CONDITION_ALWAYS

    @property
    def condition_expression(self) -> str:
        if isinstance(self.condition, dict):
            return str(self.condition.get("expression") or "")
        return self.condition or ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "agentRef": self.agent_ref,
            "condition": self.condition,
            "inputMapping": self.input_mapping,
            "outputMapping": self.output_mapping,
            "timeoutMs": self.timeout_ms,
            "retryCount": self.retry_count,
            "continueOnError": self.continue_on_error,
        }


@dataclass
class ChainDefinition:
    id: str
    name: str
    steps: List[ChainStep]
    description: str = ""

    def get_step(self, step_id: str) -> Optional[ChainStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


def parse_step(raw: Dict[str, Any]) -> ChainStep:
    """Build a ChainStep from JSON (accepts ``agentId`` and legacy ``timeout``)."""
    condition = raw.get("condition")
    continue_on_error = bool(raw.get("continueOnError", False))
    if isinstance(condition, dict) and condition.get("type") == CONDITION_IF_ERROR:
        continue_on_error = True
    return ChainStep(
        id=str(raw.get("id") or ""),
        name=str(raw.get("name") or ""),
        agent_ref=str(raw.get("agentRef") or raw.get("agentId") or ""),
        condition=condition or None,
        input_mapping=raw.get("inputMapping") or None,
        output_mapping=raw.get("outputMapping") or None,
        timeout_ms=_timeout_ms(raw),
        retry_count=max(0, int(raw.get("retryCount") or 0)),
        continue_on_error=continue_on_error,
        description=str(raw.get("description") or ""),
    )


def parse_chain(definition: Dict[str, Any]) -> ChainDefinition:
    return ChainDefinition(
        id=str(definition.get("id") or ""),
        name=str(definition.get("name") or ""),
        description=str(definition.get("description") or ""),
        steps=[parse_step(s) for s in definition.get("steps") or []],
    )


def validate_chain(definition: Dict[str, Any]) -> ValidationResult:
    """Validate a raw chain definition.

    Errors: no steps, a step without id, name or agent reference,
    duplicate step ids, negative retryCount, non-positive timeout, unknown
    structured condition type.
    Warnings: unparsable condition or mapping expressions.
    """
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    steps = definition.get("steps") or []
    if not isinstance(steps, list) or not steps:
        errors.append(ValidationIssue(code="EMPTY_CHAIN", message="Chain must have at least one step"))
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    seen = set()
    for index, raw in enumerate(steps):
        if not isinstance(raw, dict):
            errors.append(ValidationIssue(
                code="INVALID_STEP",
                message=f"Step {index} must be an object",
                context={"index": index},
            ))
            continue

        step_id = raw.get("id")
        label = step_id or f"#{index}"
        if not step_id:
            errors.append(ValidationIssue(
                code="MISSING_STEP_ID",
                message=f"Step {index} has no id",
                context={"index": index},
            ))
        elif step_id in seen:
            errors.append(ValidationIssue(
                code="DUPLICATE_STEP_ID",
                message=f"Duplicate step id '{step_id}'",
                node_ids=[step_id],
            ))
        elif step_id in RESERVED_STATE_KEYS:
            errors.append(ValidationIssue(
                code="RESERVED_STEP_ID",
                message=f"Step id '{step_id}' is reserved",
                node_ids=[step_id],
            ))
        seen.add(step_id)

        if not raw.get("name"):
            errors.append(ValidationIssue(
                code="MISSING_STEP_NAME",
                message=f"Step {label} has no name",
                node_ids=[step_id] if step_id else [],
            ))
        if not (raw.get("agentRef") or raw.get("agentId")):
            errors.append(ValidationIssue(
                code="MISSING_AGENT_REF",
                message=f"Step {label} has no agent reference",
                node_ids=[step_id] if step_id else [],
            ))

        retry_count = raw.get("retryCount", 0)
        if not isinstance(retry_count, int) or isinstance(retry_count, bool) or retry_count < 0:
            errors.append(ValidationIssue(
                code="INVALID_RETRY_COUNT",
                message=f"Step {label} retryCount must be a non-negative integer",
                node_ids=[step_id] if step_id else [],
            ))

        for key in ("timeoutMs", "timeout"):
            value = raw.get(key)
            if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                errors.append(ValidationIssue(
                    code="INVALID_TIMEOUT",
                    message=f"Step {label} {key} must be a positive number",
                    node_ids=[step_id] if step_id else [],
                ))

        condition = raw.get("condition")
        expression = ""
        if isinstance(condition, dict):
            if condition.get("type", CONDITION_ALWAYS) not in CONDITION_TYPES:
                errors.append(ValidationIssue(
                    code="INVALID_CONDITION_TYPE",
                    message=f"Step {label} condition type '{condition.get('type')}' is not one of {list(CONDITION_TYPES)}",
                    node_ids=[step_id] if step_id else [],
                ))
            elif condition.get("type") == CONDITION_CUSTOM:
                expression = condition.get("expression") or ""
        elif isinstance(condition, str):
            expression = condition
        if expression:
            for err in validate_condition_expression(expression):
                warnings.append(ValidationIssue(
                    code="INVALID_CONDITION",
                    message=f"Step {label} condition is invalid: {err}",
                    severity="warning",
                    node_ids=[step_id] if step_id else [],
                ))

        for mapping_key in ("inputMapping", "outputMapping"):
            mapping = raw.get(mapping_key) or {}
            if not isinstance(mapping, dict):
                errors.append(ValidationIssue(
                    code="INVALID_MAPPING",
                    message=f"Step {label} {mapping_key} must be an object",
                    node_ids=[step_id] if step_id else [],
                ))
                continue
            for local_key, value in mapping.items():
                if not is_path(value):
                    continue
                for err in validate_condition_expression(value):
                    warnings.append(ValidationIssue(
                        code="INVALID_MAPPING",
                        message=f"Step {label} {mapping_key}.{local_key} is invalid: {err}",
                        severity="warning",
                        node_ids=[step_id] if step_id else [],
                    ))

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


@dataclass
class StepOutcome:
    """Result of one step in a chain run."""

    status: str
    output: Any = None
    raw: Any = None
    error: Optional[str] = None
    attempts: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "status": self.status,
            "output": self.output,
            "raw": self.raw,
            "attempts": self.attempts,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepOutcome":
        return cls(
            status=data.get("status", STEP_COMPLETED),
            output=data.get("output"),
            raw=data.get("raw"),
            error=data.get("error"),
            attempts=int(data.get("attempts") or 0),
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
        )


@dataclass
class ChainExecution:
    """One chain run, owned exclusively by the run that created it."""

    id: str
    chain_id: str
    input: Any = None
    variables: Dict[str, Any] = field(default_factory=dict)
    status: str = RUNNING
    current_step_index: int = 0
    per_step_result: Dict[str, StepOutcome] = field(default_factory=dict)
    previous_step_id: Optional[str] = None
    output: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def progress(self) -> Dict[str, Any]:
        """Fields that change as the run advances."""
        return {
            "currentStepIndex": self.current_step_index,
            "perStepResult": {k: v.to_dict() for k, v in self.per_step_result.items()},
            "previousStepId": self.previous_step_id,
            "variables": self.variables,
            "output": self.output,
        }

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chainId": self.chain_id,
            "input": self.input,
            "status": self.status,
            "error": self.error,
            "errorKind": self.error_kind,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            **self.progress(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ChainExecution":
        return cls(
            id=record["id"],
            chain_id=record.get("chainId", ""),
            input=record.get("input"),
            variables=dict(record.get("variables") or {}),
            status=record.get("status", RUNNING),
            current_step_index=int(record.get("currentStepIndex") or 0),
            per_step_result={
                k: StepOutcome.from_dict(v) for k, v in (record.get("perStepResult") or {}).items()
            },
            previous_step_id=record.get("previousStepId"),
            output=record.get("output"),
            error=record.get("error"),
            error_kind=record.get("errorKind"),
            started_at=record.get("startedAt"),
            completed_at=record.get("completedAt"),
        )


def build_state_document(execution: ChainExecution) -> Dict[str, Any]:
    """Chain state that conditions and input mappings are evaluated against."""
    document: Dict[str, Any] = dict(execution.variables)
    document["input"] = execution.input
    document["variables"] = execution.variables
    for step_id, outcome in execution.per_step_result.items():
        document[step_id] = {"status": outcome.status, "output": outcome.output, "raw": outcome.raw}
    # Index-addressable view of the same outcomes, in run order
    document["stepResults"] = [
        {"stepId": step_id, "status": outcome.status, "output": outcome.output, "error": outcome.error}
        for step_id, outcome in execution.per_step_result.items()
    ]
    if execution.previous_step_id is not None:
        previous = execution.per_step_result.get(execution.previous_step_id)
        document["previous_step"] = {
            "id": execution.previous_step_id,
            "status": previous.status if previous else None,
            "output": previous.output if previous else None,
        }
    else:
        document["previous_step"] = None
    return document


def _mapping_path(value: str, document: Dict[str, Any]) -> Optional[str]:
    """``$`` path for the ``variables.x`` and ``stepResults[i].field`` forms."""
    if value.startswith("variables.") and "variables" in document:
        return "$." + value
    if _STEP_RESULT_FORM.match(value) and "stepResults" in document:
        return "$." + value
    return None


def resolve_mapping_value(value: Any, document: Dict[str, Any]) -> Any:
    """Resolve one mapping value.

    Strings starting with ``$`` are path expressions, optionally with
    ``||`` fallbacks (``$.input.tone || 'professional'``). Unprefixed
    strings in the forms older chain definitions use are read from the
    document as well: a bare document key (``topic``), ``variables.x``
    and ``stepResults[i].field``. Everything else is a constant.
    Unresolvable expressions yield None.
    """
    if isinstance(value, str) and not is_path(value):
        key = value.strip()
        if _IDENTIFIER.match(key) and key in document:
            return document[key]
        path = _mapping_path(key, document)
        return value if path is None else resolve_path(path, document)
    if not is_path(value):
        return value
    try:
        return safe_eval(value, document)
    except SafeEvalError as e:
        logger.warning(f"Mapping '{value}' could not be resolved: {e}")
        return None


def apply_mapping(mapping: Dict[str, Any], document: Dict[str, Any]) -> Dict[str, Any]:
    return {key: resolve_mapping_value(value, document) for key, value in mapping.items()}


def retry_delay(attempt: int) -> float:
    """Backoff before retry number ``attempt`` (1-based); 0 means immediate."""
    if CHAIN_RETRY_BASE_DELAY <= 0:
        return 0.0
    return min(CHAIN_RETRY_BASE_DELAY * (2 ** (attempt - 1)), CHAIN_RETRY_MAX_DELAY)


class ChainStepper:
    """Advances chain executions one step at a time.

    Args:
        chain: Parsed chain definition
        invoker: AgentInvoker used for every step
        sleep: Awaitable used between retries (injectable for tests)
    """

    def __init__(
        self,
        chain: ChainDefinition,
        invoker: Any,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.chain = chain
        self.invoker = invoker
        self._sleep = sleep

    def start(self, execution_id: str, input: Any, variables: Optional[Dict[str, Any]] = None) -> ChainExecution:
        return ChainExecution(
            id=execution_id,
            chain_id=self.chain.id,
            input=input,
            variables=dict(variables or {}),
            started_at=_now(),
        )

    def should_run(self, step: ChainStep, execution: ChainExecution, document: Dict[str, Any]) -> bool:
        condition_type = step.condition_type
        previous = execution.per_step_result.get(execution.previous_step_id or "")

        if condition_type == CONDITION_ALWAYS:
            return True
        if condition_type == CONDITION_IF_SUCCESS:
            return previous is None or previous.status != STEP_FAILED
        if condition_type == CONDITION_IF_ERROR:
            return previous is not None and previous.status == STEP_FAILED
        if condition_type == CONDITION_CUSTOM:
            return eval_condition(step.condition_expression, document)
        logger.warning(f"Step '{step.id}' has unknown condition type '{condition_type}', running it")
        return True

    def map_input(self, step: ChainStep, execution: ChainExecution, document: Dict[str, Any]) -> Dict[str, Any]:
        if not step.input_mapping:
            return {**execution.variables, "input": execution.input}
        return apply_mapping(step.input_mapping, document)

    def map_output(self, step: ChainStep, raw: Any) -> Any:
        if not step.output_mapping:
            return raw
        source = {**raw, "output": raw} if isinstance(raw, dict) else {"output": raw}
        return apply_mapping(step.output_mapping, source)

    async def invoke_step(self, step: ChainStep, step_input: Dict[str, Any]) -> Any:
        """One attempt: invoke under the step timeout and return the raw output.

        Raises:
            StepTimeoutError: If the attempt exceeded ``timeout_ms``
            AgentInvocationError: For any other invoker failure
        """
        try:
            response = await asyncio.wait_for(
                self.invoker.invoke(step.agent_ref, step_input),
                timeout=step.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise StepTimeoutError(step.agent_ref, step.id, step.timeout_ms) from e
        except AgentInvocationError:
            raise
        except Exception as e:
            raise AgentInvocationError(step.agent_ref, str(e)) from e

        if isinstance(response, dict) and "output" in response:
            return response["output"]
        return response

    async def advance(self, execution: ChainExecution) -> ChainExecution:
        """Run the current step and move the execution forward.

        Returns the same execution, updated in place.
        """
        if execution.terminal:
            return execution

        steps = self.chain.steps
        if execution.current_step_index >= len(steps):
            self._complete(execution)
            return execution

        step = steps[execution.current_step_index]
        document = build_state_document(execution)

        if not self.should_run(step, execution, document):
            logger.info(f"Chain {execution.id}: step '{step.id}' skipped (condition false)")
            timestamp = _now()
            self._record(execution, step, StepOutcome(
                status=STEP_SKIPPED, started_at=timestamp, completed_at=timestamp,
            ))
            return execution

        step_input = self.map_input(step, execution, document)
        started_at = _now()
        max_attempts = step.retry_count + 1
        last_error: Optional[AgentInvocationError] = None
        raw: Any = None

        for attempt in range(1, max_attempts + 1):
            logger.info(
                f"Chain {execution.id}: step '{step.id}' attempt {attempt}/{max_attempts} "
                f"(agent={step.agent_ref})"
            )
            try:
                raw = await self.invoke_step(step, step_input)
                last_error = None
                break
            except AgentInvocationError as e:
                last_error = e
                logger.warning(f"Chain {execution.id}: step '{step.id}' attempt {attempt} failed: {e}")
                if attempt < max_attempts:
                    delay = retry_delay(attempt)
                    if delay > 0:
                        await self._sleep(delay)

        if last_error is not None:
            outcome = StepOutcome(
                status=STEP_FAILED,
                error=str(last_error),
                attempts=attempt,
                started_at=started_at,
                completed_at=_now(),
            )
            if step.continue_on_error:
                logger.info(f"Chain {execution.id}: step '{step.id}' failed, continuing")
                self._record(execution, step, outcome)
                return execution

            execution.per_step_result[step.id] = outcome
            execution.previous_step_id = step.id
            self._fail(execution, str(last_error), error_kind_of(last_error))
            return execution

        mapped = self.map_output(step, raw)
        if step.output_mapping:
            execution.variables.update(mapped)
        elif isinstance(raw, dict):
            execution.variables.update(raw)
        execution.output = mapped

        self._record(execution, step, StepOutcome(
            status=STEP_COMPLETED,
            output=mapped,
            raw=raw,
            attempts=attempt,
            started_at=started_at,
            completed_at=_now(),
        ))
        logger.info(f"Chain {execution.id}: step '{step.id}' completed")
        return execution

    def _record(self, execution: ChainExecution, step: ChainStep, outcome: StepOutcome) -> None:
        execution.per_step_result[step.id] = outcome
        execution.previous_step_id = step.id
        execution.current_step_index += 1
        if execution.current_step_index >= len(self.chain.steps):
            self._complete(execution)

    def _complete(self, execution: ChainExecution) -> None:
        execution.status = COMPLETED
        execution.completed_at = _now()
        logger.info(f"Chain {execution.id} completed")

    def _fail(self, execution: ChainExecution, error: str, error_kind: str) -> None:
        execution.status = FAILED
        execution.error = error
        execution.error_kind = error_kind
        execution.completed_at = _now()
        logger.error(f"Chain {execution.id} failed: {error}")
