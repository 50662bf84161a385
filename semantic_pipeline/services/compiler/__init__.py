"""Plan compiler."""

from semantic_pipeline.services.compiler.compiler import compile_plan
from semantic_pipeline.services.compiler.models import CompiledQuery, CompilerError

__all__ = ["CompiledQuery", "CompilerError", "compile_plan"]
