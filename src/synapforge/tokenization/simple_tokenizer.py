class SimpleCharacterTokenizer:
    """
    A simple character-level tokenizer.

    This tokenizer builds a vocabulary from a given corpus and provides methods
    to encode text into a sequence of integer tokens and decode a sequence of
    tokens back into text. Two special tokens are appended after the corpus
    characters: ``<PAD>`` and the end-of-sentence marker ``</s>``.
    """

    pad_char: str = "<PAD>"
    eos_char: str = "</s>"

    def __init__(self, corpus: list[str]):
        """
        Initializes the SimpleCharacterTokenizer.

        Args:
            corpus (list[str]): A list of strings from which to build the vocabulary.
                                The vocabulary will consist of all unique characters
                                present in the corpus.
        """
        if not isinstance(corpus, list):
            raise TypeError("Corpus must be a list of strings.")
        if not all(isinstance(s, str) for s in corpus):
            raise TypeError("All items in the corpus must be strings.")

        # Sort for consistent mapping
        self.chars: list[str] = sorted(set("".join(corpus)))
        self.stoi: dict[str, int] = {char: i for i, char in enumerate(self.chars)}
        self.itos: dict[int, str] = {i: char for i, char in enumerate(self.chars)}

        self.special_tokens: set[int] = set()
        self.pad_token_id: int = self._add_special(self.pad_char)
        self.eos_token_id: int = self._add_special(self.eos_char)
        self.eos_token: str = self.eos_char

    def _add_special(self, token: str) -> int:
        token_id = len(self.chars)
        self.chars.append(token)
        self.stoi[token] = token_id
        self.itos[token_id] = token
        self.special_tokens.add(token_id)
        return token_id

    @property
    def vocab_size(self) -> int:
        return len(self.chars)

    def encode(self, text: str, add_special_tokens: bool = True) -> list[int]:
        """
        Encodes a string of text into a list of integer tokens.

        ``add_special_tokens`` is accepted for interface compatibility; this
        tokenizer has no BOS token to prepend.

        Raises:
            KeyError: If the text contains characters not present in the
                      tokenizer's vocabulary (i.e., not found in the
                      initial corpus).
        """
        if not isinstance(text, str):
            raise TypeError("Input text must be a string.")

        tokens: list[int] = []
        for char in text:
            try:
                tokens.append(self.stoi[char])
            except KeyError:
                raise KeyError(
                    f"Character '{char}' not found in tokenizer vocabulary. "
                    "Only characters present in the initial corpus can be encoded."
                )
        return tokens

    def decode(self, tokens: list[int], skip_special_tokens: bool = True) -> str:
        """
        Decodes a list of integer tokens back into a string of text.

        Raises:
            KeyError: If the list contains token IDs not present in the
                      tokenizer's vocabulary.
        """
        text_chars: list[str] = []
        for token in tokens:
            if skip_special_tokens and token in self.special_tokens:
                continue
            try:
                text_chars.append(self.itos[token])
            except KeyError:
                raise KeyError(
                    f"Token ID '{token}' not found in tokenizer vocabulary. "
                    "Only token IDs derived from the initial corpus can be decoded."
                )
        return "".join(text_chars)

    def token_to_id(self, token: str) -> int | None:
        return self.stoi.get(token)
