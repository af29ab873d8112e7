"""
ProcessorDependencies ל-request — נבנה פעם אחת ב-startup ונשמר ב-app.state.
"""
from fastapi import Request

from app.domain.processors.dependencies import ProcessorDependencies, build_processor_dependencies


def get_processor_dependencies(request: Request) -> ProcessorDependencies:
    deps = getattr(request.app.state, "processor_deps", None)
    if deps is None:
        deps = build_processor_dependencies()
        request.app.state.processor_deps = deps
    return deps
