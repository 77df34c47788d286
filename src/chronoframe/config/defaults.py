from __future__ import annotations

from .schema import AgeModelConfig, AlignConfig, RunConfig, SpliceConfig, WorkflowConfig


def default_config() -> RunConfig:
    return RunConfig(
        age_model=AgeModelConfig(),
        align=AlignConfig(),
        splice=SpliceConfig(),
        workflow=WorkflowConfig(),
    )
