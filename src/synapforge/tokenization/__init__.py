from .simple_tokenizer import SimpleCharacterTokenizer
from .tokenizer import BaseTokenizer, HFTokenizer

__all__ = ["BaseTokenizer", "HFTokenizer", "SimpleCharacterTokenizer"]
