"""Execution Engine: expression evaluation, flow validation and scheduling,
chain stepping, and execution records."""

from .safe_eval import eval_condition, eval_transform, safe_eval, validate_condition_expression
from .graph_builder import (
    EdgeDefinition,
    FlowDefinition,
    LoopInfo,
    NodeConfig,
    ValidationResult,
    detect_loops,
    parse_flow,
    validate_flow,
)
from .scheduler import FIRST_ARRIVAL, WAIT_ALL, FlowRun, FlowScheduler
from .chain import (
    ChainDefinition,
    ChainExecution,
    ChainStep,
    ChainStepper,
    StepOutcome,
    parse_chain,
    validate_chain,
)
from .records import ExecutionRecordManager, RecordLifecycleError
from .cancellation import CancellationRegistry, cancellation_registry
from .executor import drive_chain, execute_flow, execute_flow_by_id, run_chain, start_chain

__all__ = [
    "eval_condition",
    "eval_transform",
    "safe_eval",
    "validate_condition_expression",
    "EdgeDefinition",
    "FlowDefinition",
    "LoopInfo",
    "NodeConfig",
    "ValidationResult",
    "detect_loops",
    "parse_flow",
    "validate_flow",
    "FIRST_ARRIVAL",
    "WAIT_ALL",
    "FlowRun",
    "FlowScheduler",
    "ChainDefinition",
    "ChainExecution",
    "ChainStep",
    "ChainStepper",
    "StepOutcome",
    "parse_chain",
    "validate_chain",
    "ExecutionRecordManager",
    "RecordLifecycleError",
    "CancellationRegistry",
    "cancellation_registry",
    "drive_chain",
    "execute_flow",
    "execute_flow_by_id",
    "run_chain",
    "start_chain",
]
