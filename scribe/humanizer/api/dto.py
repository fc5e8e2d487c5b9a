from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HumanizeDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1)
    max_chunk_chars: Optional[int] = Field(None, alias="maxChunkChars", gt=0)


class AnalyzeDTO(BaseModel):
    text: str = Field(min_length=1)


class HumanizeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    chunk_count: int = Field(alias="chunkCount")
    failed_chunks: List[int] = Field(alias="failedChunks")
    input_words: int = Field(alias="inputWords")
    output_words: int = Field(alias="outputWords")
