"""
Defaults and Fixed Tables for auxmerge
======================================

Prompt template, asset command formats and status block formats shipped with the
auxiliary generator.

Author: auxmerge contributors | 2026-10-19
"""

from dataclasses import dataclass
from typing import List


EXTENSION_NAME = "auxmodel"


# =============================================================================
# Prompt Template
# =============================================================================

DEFAULT_PROMPT_TEMPLATE = """You are an auxiliary AI that adds asset commands and status displays to roleplay responses.

[Reference Data]
{{worldInfo}}

[Current Response]
{{lastMessage}}

[Previous Auxiliary Outputs]
{{auxHistory}}

[CRITICAL: POSITION MARKERS ARE MANDATORY]
Every piece of content you output MUST be wrapped in position markers. Content without position markers will be DISCARDED.

Available position markers:
- [PREPEND]content here[/PREPEND] -> Inserts at the BEGINNING of the response
- [APPEND]content here[/APPEND] -> Inserts at the END of the response
- [INSERT:N]content here[/INSERT] -> Inserts after the Nth paragraph (N=1 means after first paragraph)

[Instructions]
- ALL output MUST be inside position markers
- Use ONLY the assets and status formats defined in Reference Data above
- Do NOT create or reference any assets not listed in Reference Data
- Generate up to {{assetCount}} asset commands maximum
- Maintain consistency with your previous outputs shown above (if any)
- Asset command format: {{assetFormat}}

[Prohibitions]
1. NO output without position markers
2. NO translations of any kind
3. NO explanations, commentary, or descriptions
4. NO repetition or paraphrasing of the original response
5. If no appropriate assets exist, output NOTHING (empty response)

Output ONLY position marker blocks. Nothing else.

[Example Output]
[PREPEND]
<status>
hp: 100
location: forest
</status>
[/PREPEND]
[APPEND]
{{assetExample}}
[/APPEND]"""

# Placeholders resolved by AuxiliaryService.build_prompt
PROMPT_PLACEHOLDERS = (
    "worldInfo",
    "lastMessage",
    "assetFormat",
    "assetExample",
    "assetCount",
    "auxHistory",
)

DEFAULT_LORE_KEYWORD = "auxmodel"


# =============================================================================
# Asset and Status Formats
# =============================================================================

@dataclass(frozen=True)
class AssetFormatOption:
    """A built-in asset command syntax understood by the chat front-end."""
    id: str
    start: str
    end: str
    name: str
    example: str


ASSET_FORMAT_OPTIONS: List[AssetFormatOption] = [
    AssetFormatOption(
        id="percent",
        start="%%img:",
        end="%%",
        name="Percent format (%%img:file.png%%)",
        example="%%img:smile.png%%",
    ),
    AssetFormatOption(
        id="curly",
        start="{{img::",
        end="}}",
        name="Curly brace format ({{img::file.png}})",
        example="{{img::smile.png}}",
    ),
]

DEFAULT_ASSET_FORMAT_ID = "percent"


def get_asset_format_option(format_id: str) -> AssetFormatOption:
    """Look up an asset format by id, falling back to the first option."""
    for option in ASSET_FORMAT_OPTIONS:
        if option.id == format_id:
            return option
    return ASSET_FORMAT_OPTIONS[0]
