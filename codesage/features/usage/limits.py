"""
codesage/features/usage/limits.py

Free-tier limit table.

Caps are daily counts fixed at build time. Video generation is capped at 0:
free users can never use it.
"""

from typing import Dict, Optional, Union

from codesage.models.subscription import Feature


FREE_LIMITS: Dict[Feature, int] = {
    Feature.CODE_ANALYSIS: 3,
    Feature.VIDEO_GENERATION: 0,
    Feature.PROBLEM_SOLVING: 3,
}

# Capabilities free users never get, metered or not
PRO_ONLY_FEATURES = frozenset({
    "video_generation",
    "voice_narration",
    "custom_avatars",
    "flowchart_export",
    "premium_challenges",
})

# Client-side identifiers accepted alongside the snake_case names
FEATURE_ALIASES = {
    "codeAnalysis": "code_analysis",
    "problemSolving": "problem_solving",
    "videoGeneration": "video_generation",
    "voiceNarration": "voice_narration",
    "customAvatars": "custom_avatars",
    "flowchartExport": "flowchart_export",
    "premiumChallenges": "premium_challenges",
}


def normalize_feature_name(feature: Union[Feature, str]) -> str:
    if isinstance(feature, Feature):
        return feature.value
    return FEATURE_ALIASES.get(feature, feature)


def as_metered_feature(feature: Union[Feature, str]) -> Optional[Feature]:
    """Metered Feature for the identifier, or None if it is not metered."""
    name = normalize_feature_name(feature)
    try:
        return Feature(name)
    except ValueError:
        return None


def get_free_limit(feature: Feature) -> int:
    return FREE_LIMITS[feature]
