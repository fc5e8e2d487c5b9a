# scribe/llm/service/length_vocabulary.py
"""
Phrase lists used by the length intent detector.

Bump VOCABULARY_VERSION whenever a list changes so logged decisions can
be traced back to the vocabulary that produced them. All phrases are
lowercase; matching is substring-based against lowercased text.
"""

VOCABULARY_VERSION = "2024.2"

LONG_FORM_PHRASES = (
    "comprehensive", "in-depth", "deep dive", "full chapter", "chapter", "thesis",
    "dissertation", "full work", "thorough", "long and detailed", "in-depth research",
    "long-form", "long form", "extensive", "elaborate", "detailed report",
    "complete review", "white paper", "comprehensive literature review",
    "systematic review", "state of the art", "survey paper", "ultimate guide",
    "comprehensive guide", "long essay", "long answer", "end-to-end", "from scratch",
    "detailed", "in detail", "break down", "full explanation", "full documentation",
    "background and literature review", "tutorial series", "monograph", "treatise",
    # academic
    "extensive analysis", "critical review", "comparative study",
    "meta-analysis", "empirical study", "research paper", "case study",
    "doctoral thesis", "scholarly article", "peer-reviewed paper",
    "comprehensive examination", "detailed discussion",
    # professional
    "industry report", "market analysis", "annual report", "technical report",
    "technical documentation", "strategic review", "whitebook",
    "policy paper", "business case", "position paper", "blueprint",
    "implementation guide", "handbook", "manual", "playbook",
    # guides
    "step by step guide", "how-to guide", "definitive guide",
    "mega guide", "masterclass", "full walkthrough", "full write up", "knowledge base article",
    "encyclopedia entry", "reference guide", "learning resource",
    "training module", "educational series", "explained thoroughly",
    # long content styles
    "long read", "feature article", "op-ed essay", "long story",
    "exposition", "disquisition", "comprehensive answer",
    "extensive write-up", "lengthy explanation", "in-depth walkthrough",
    # documentation
    "specification document", "design doc", "project documentation",
    "architecture guide", "engineering report", "api reference",
    "developer documentation", "end-user manual",
    # books
    "research monograph", "scholarly treatise", "compendium",
    "encyclopedia", "reference book", "anthology", "volume",
    "detailed narrative", "lengthy manuscript", "comprehensive textbook",
    # depth
    "granular analysis", "microscopic view", "holistic overview",
    "all-inclusive guide", "full coverage", "exhaustive guide",
    "step-by-step breakdown", "extensive coverage", "complete solution",
    "long version", "expanded version", "extended edition", "annotated edition",
    # file analysis
    "analyze this", "analyze the", "what does this show", "explain this", "describe this",
    "what is this", "interpret this", "examine this", "review this", "study this",
    "breakdown this", "understand this", "evaluate this", "assess this",
    "analyze the image", "analyze the document", "analyze the file", "analyze the chart",
    "analyze the graph", "analyze the diagram", "analyze the data", "analyze the content",
    # academic analysis
    "literature review", "research analysis", "theoretical framework", "methodology",
    "data analysis", "statistical analysis", "qualitative analysis", "quantitative analysis",
    "content analysis", "discourse analysis", "textual analysis", "critical analysis",
    "comparative analysis", "historical analysis", "contextual analysis", "empirical analysis",
    # general academic
    "academic paper", "research essay", "academic writing", "scholarly writing",
    "academic analysis", "research project", "academic study", "scholarly research",
    "academic discussion", "research discussion", "academic exploration", "scholarly exploration",
)

ACADEMIC_PHRASES = (
    "explain", "analyze", "discuss", "compare", "contrast", "evaluate", "assess",
    "describe", "examine", "investigate", "research", "study", "review", "critique",
    "define", "identify", "interpret", "demonstrate", "illustrate", "show",
    "academic", "scholarly", "analysis", "theory", "concept", "principle",
)

LONG_FORM_RANGE = (7000, 15000)
ACADEMIC_RANGE = (1500, 4000)
