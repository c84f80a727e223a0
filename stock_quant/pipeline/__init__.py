from .context import AnalysisContext
from .engine import PipelineEngine, analyze_stock
