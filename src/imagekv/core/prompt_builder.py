"""Static prompt augmentation.

The prompt sent to the model is the user's prompt followed by two optional,
fixed sections taken from configuration:

    [User Prompt], [Style Template]. Avoid: [Negative Prompt]

Empty sections are omitted, so with the default configuration the user's
prompt is sent unchanged.  This is plain string concatenation; nothing about
it depends on the request beyond the prompt text itself.

Usage
-----
::

    compiled = build_prompt(
        "a red cube",
        style_template="studio lighting, highly detailed",
        negative_prompt="blurry, low quality",
    )
    # 'a red cube, studio lighting, highly detailed. Avoid: blurry, low quality'
"""

from __future__ import annotations


def build_prompt(
    prompt: str,
    *,
    style_template: str = "",
    negative_prompt: str = "",
) -> str:
    """Compile the prompt sent to the inference backend.

    Args:
        prompt: The validated user prompt.
        style_template: Style/quality text appended after a comma.  Pass an
            empty string to omit.
        negative_prompt: Things the model should avoid, appended after
            ``". Avoid: "``.  Pass an empty string to omit.

    Returns:
        The compiled prompt string.
    """
    compiled = prompt.strip()

    stripped_style = style_template.strip()
    if stripped_style:
        compiled = f"{compiled}, {stripped_style}"

    stripped_negative = negative_prompt.strip()
    if stripped_negative:
        compiled = f"{compiled}. Avoid: {stripped_negative}"

    return compiled
