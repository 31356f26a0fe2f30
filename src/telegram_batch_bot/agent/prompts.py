"""Prompt templates for the chat responder."""

# Prompt for answering a batch of messages from one chat
BATCH_PROMPT = """New messages in this chat:
{messages}

Chat info: Type: {chat_type}, Title: {chat_title}

Relevant context:
{context}

Reply to these messages as one short, natural response. Do not repeat these instructions."""

# Appended to the system prompt when a chat has its own instructions
CUSTOM_PROMPT_SUFFIX = """

Additional instructions for this chat:
{custom_prompt}"""

NO_CONTEXT = "(none)"

NO_RESPONSE_TEXT = "I'm sorry, I couldn't generate a response."
