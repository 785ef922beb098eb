"""
Stage topology for the content pipeline.

The pipeline is a fixed, totally ordered sequence of stages. Every task
belongs to exactly one stage and every run walks the stages in this order.
"""

from enum import Enum
from typing import NamedTuple, Optional


class WorkflowStage(str, Enum):
    """Pipeline stages, declared in execution order."""

    INTAKE = "intake"
    RESEARCH = "research"
    KB_BUILD = "kb_build"
    SITEMAP = "sitemap"
    BLUEPRINT = "blueprint"
    COPYWRITE = "copywrite"
    IMAGE_GENERATE = "image_generate"
    IMAGE_QA = "image_qa"
    IMAGE_FIX = "image_fix"
    IMAGE_STORE = "image_store"
    CODEGEN = "codegen"
    QA_SITE = "qa_site"
    PUBLISH = "publish"


class AgentType(str, Enum):
    """Labels for the agent families that process tasks."""

    LLAMA = "llama"
    GEMINI = "gemini"
    CLAUDE = "claude"
    KIMI = "kimi"
    IMAGEN = "imagen"
    PERPLEXITY = "perplexity"


class StageMetadata(NamedTuple):
    label: str
    description: str


STAGE_ORDER: tuple[WorkflowStage, ...] = tuple(WorkflowStage)

FIRST_STAGE: WorkflowStage = STAGE_ORDER[0]
LAST_STAGE: WorkflowStage = STAGE_ORDER[-1]

STAGE_AGENTS: dict[WorkflowStage, AgentType] = {
    WorkflowStage.INTAKE: AgentType.LLAMA,
    WorkflowStage.RESEARCH: AgentType.GEMINI,  # also queries Perplexity
    WorkflowStage.KB_BUILD: AgentType.LLAMA,
    WorkflowStage.SITEMAP: AgentType.KIMI,
    WorkflowStage.BLUEPRINT: AgentType.KIMI,
    WorkflowStage.COPYWRITE: AgentType.CLAUDE,
    WorkflowStage.IMAGE_GENERATE: AgentType.IMAGEN,
    WorkflowStage.IMAGE_QA: AgentType.CLAUDE,  # dual review with Kimi
    WorkflowStage.IMAGE_FIX: AgentType.GEMINI,
    WorkflowStage.IMAGE_STORE: AgentType.IMAGEN,
    WorkflowStage.CODEGEN: AgentType.KIMI,
    WorkflowStage.QA_SITE: AgentType.CLAUDE,
    WorkflowStage.PUBLISH: AgentType.KIMI,
}

STAGE_MODELS: dict[WorkflowStage, str] = {
    WorkflowStage.INTAKE: "meta/llama-4-maverick",
    WorkflowStage.RESEARCH: "google/gemini-2.5-flash",
    WorkflowStage.KB_BUILD: "meta/llama-4-maverick",
    WorkflowStage.SITEMAP: "moonshotai/kimi-k2",
    WorkflowStage.BLUEPRINT: "moonshotai/kimi-k2",
    WorkflowStage.COPYWRITE: "anthropic/claude-sonnet-4",
    WorkflowStage.IMAGE_GENERATE: "google/imagen-4.0-generate",
    WorkflowStage.IMAGE_QA: "anthropic/claude-sonnet-4",
    WorkflowStage.IMAGE_FIX: "google/gemini-2.5-flash",
    WorkflowStage.IMAGE_STORE: "google/imagen-4.0-generate",
    WorkflowStage.CODEGEN: "moonshotai/kimi-k2",
    WorkflowStage.QA_SITE: "anthropic/claude-sonnet-4",
    WorkflowStage.PUBLISH: "moonshotai/kimi-k2",
}

STAGE_METADATA: dict[WorkflowStage, StageMetadata] = {
    WorkflowStage.INTAKE: StageMetadata("Intake", "Collect business information"),
    WorkflowStage.RESEARCH: StageMetadata("Research", "Analyze market and competitors"),
    WorkflowStage.KB_BUILD: StageMetadata("Knowledge Base", "Build AI knowledge base"),
    WorkflowStage.SITEMAP: StageMetadata("Sitemap", "Plan site structure"),
    WorkflowStage.BLUEPRINT: StageMetadata("Blueprints", "Design page layouts"),
    WorkflowStage.COPYWRITE: StageMetadata("Content", "Write page content"),
    WorkflowStage.IMAGE_GENERATE: StageMetadata("Images", "Generate images"),
    WorkflowStage.IMAGE_QA: StageMetadata("Image QA", "Review image quality"),
    WorkflowStage.IMAGE_FIX: StageMetadata("Image Fix", "Fix image issues"),
    WorkflowStage.IMAGE_STORE: StageMetadata("Storage", "Upload to WordPress"),
    WorkflowStage.CODEGEN: StageMetadata("Compile", "Generate HTML"),
    WorkflowStage.QA_SITE: StageMetadata("Site QA", "Final quality check"),
    WorkflowStage.PUBLISH: StageMetadata("Publish", "Publish to WordPress"),
}


def stage_index(stage: WorkflowStage) -> int:
    """Position of a stage in the pipeline (0-based)."""
    return STAGE_ORDER.index(WorkflowStage(stage))


def get_next_stage(stage: WorkflowStage) -> Optional[WorkflowStage]:
    """Get the stage after ``stage``, or None if it is the last one."""
    index = stage_index(stage)
    if index >= len(STAGE_ORDER) - 1:
        return None
    return STAGE_ORDER[index + 1]


def get_previous_stage(stage: WorkflowStage) -> Optional[WorkflowStage]:
    """Get the stage before ``stage``, or None if it is the first one."""
    index = stage_index(stage)
    if index <= 0:
        return None
    return STAGE_ORDER[index - 1]
