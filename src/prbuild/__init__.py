"""prbuild — resolve, check out, build and report one frontend CI run.

Key exports:
    resolve_checkout_plan — Pure trigger resolver
    trigger_context_from_env — Snapshot env/params into a TriggerContext
    TriggerContext, CheckoutPlan, CheckoutMode — Resolver input/output
    PipelineRunner, run_pipeline — Sequential run execution
    RunOutcome, RunReport — Run results
"""

from prbuild.models import (
    CheckoutMode,
    CheckoutPlan,
    RunOutcome,
    RunReport,
    TriggerContext,
)
from prbuild.pipeline import PipelineRunner, run_pipeline
from prbuild.resolver import resolve_checkout_plan, trigger_context_from_env

__version__ = "0.1.0"

__all__ = [
    "CheckoutMode",
    "CheckoutPlan",
    "PipelineRunner",
    "RunOutcome",
    "RunReport",
    "TriggerContext",
    "resolve_checkout_plan",
    "run_pipeline",
    "trigger_context_from_env",
]
