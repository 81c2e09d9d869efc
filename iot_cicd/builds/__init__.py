"""Build orchestration module.

This module handles:
- Repository preparation (clone, checkout, branch resolution)
- Workspace publication at a stable path
- Running the build script with streamed output
- The request pipeline tying these together
"""

from iot_cicd.builds.service import BuildPipeline

__all__ = ["BuildPipeline"]
