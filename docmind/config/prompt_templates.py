"""
DocMind - Prompt Templates & Context Labels
============================================
Centralised prompt management for the RAG engine and the layered
conversation context.  All generator-facing text lives here so it can be
versioned and reviewed independently of application logic.

Exports
-------
DOC_QA_SYSTEM_PROMPT, GENERAL_SYSTEM_PROMPT,
DOC_QA_CONTEXT_HEADER, DOC_QA_PASSAGE_TEMPLATE, DOC_QA_QUESTION_TEMPLATE,
KEY_INFO_CONTEXT_HEADER, KEY_INFO_CONTEXT_FOOTER,
LONG_TERM_CONTEXT_HEADER, LONG_TERM_ENTRY_TEMPLATE,
LONG_TERM_QUESTION_PREFIX, LONG_TERM_ANSWER_PREFIX,
LLM_ERROR_RESPONSE, NO_GENERATOR_RESPONSE.
"""

# ══════════════════════════════════════════════════════════════════════
#  SYSTEM PROMPTS
# ══════════════════════════════════════════════════════════════════════

DOC_QA_SYSTEM_PROMPT: str = """你是一个专业的文档问答助手。你的任务是基于用户提供的文档内容，准确、清晰地回答用户的问题。

回答要求：
1. 严格基于文档内容，不要编造或推测文档中没有的信息
2. 如果文档中没有相关信息，明确告知用户
3. 回答要简洁明了，逻辑清晰
4. 可以引用文档中的具体内容，但不要直接复制大段文字"""

GENERAL_SYSTEM_PROMPT: str = "你是一个智能助手，可以回答各种常识性问题。请用简洁、准确的语言回答问题。"


# ══════════════════════════════════════════════════════════════════════
#  DOCUMENT-GROUNDED USER MESSAGE
# ══════════════════════════════════════════════════════════════════════

DOC_QA_CONTEXT_HEADER: str = "基于以下文档内容回答问题，回答必须严格基于文档内容，不要编造信息。\n\n文档内容：\n"

DOC_QA_PASSAGE_TEMPLATE: str = "【片段{index}】{content}\n\n"

DOC_QA_QUESTION_TEMPLATE: str = "用户问题：{question}\n\n请基于上述文档内容回答问题，如果文档中没有相关信息，请明确说明。"


# ══════════════════════════════════════════════════════════════════════
#  LAYERED CONTEXT LABELS
# ══════════════════════════════════════════════════════════════════════
# The long-term prefixes double as the storage format of an archived
# turn: "问题：{q}\n回答：{a}".  Changing them orphans stored history.

KEY_INFO_CONTEXT_HEADER: str = "当前对话的关键信息：\n"
KEY_INFO_CONTEXT_FOOTER: str = "请基于以上关键信息回答问题，保持信息的一致性。"

LONG_TERM_CONTEXT_HEADER: str = "以下是一些相关的历史对话，供参考：\n"
LONG_TERM_ENTRY_TEMPLATE: str = "历史对话{index}：\n问题：{question}\n回答：{answer}\n\n"

LONG_TERM_QUESTION_PREFIX: str = "问题："
LONG_TERM_ANSWER_PREFIX: str = "回答："


# ══════════════════════════════════════════════════════════════════════
#  FIXED RESPONSES
# ══════════════════════════════════════════════════════════════════════

LLM_ERROR_RESPONSE: str = "抱歉，生成回答时出现错误，请稍后重试。"

NO_GENERATOR_RESPONSE: str = "抱歉，当前未配置语言模型服务，暂时无法回答问题。"
