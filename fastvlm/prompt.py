"""Chat template for FastVLM (Qwen2 im_start/im_end turns, one <image> placeholder)."""

SYSTEM_PROMPT = "You are a helpful vision assistant that describes images accurately."
IMAGE_PLACEHOLDER = "<image>"


def format_chat_template(text):
    return (
        f"<|im_start|>system\n{SYSTEM_PROMPT}<|im_end|>\n"
        f"<|im_start|>user\n{IMAGE_PLACEHOLDER}\n{text}<|im_end|>\n"
        f"<|im_start|>assistant\n"
    )


def find_image_token(token_ids, image_token_id):
    """Index of the image placeholder, or len // 2 when the tokenizer dropped it."""
    for i, tid in enumerate(token_ids):
        if tid == image_token_id:
            return i
    return len(token_ids) // 2
