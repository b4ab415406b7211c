from .config import PipelineConfig, load_config, tighten_config
from .contracts import TranscriptionReport

__all__ = ["PipelineConfig", "load_config", "tighten_config", "TranscriptionReport"]
