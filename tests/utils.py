SIMPLE_MODEL = "openai/gpt-oss-20b:free"
CODE_MODEL = "anthropic/claude-sonnet-4"
REASONING_MODEL = "openai/gpt-5-mini"


class StubClassifier:
    """Stands in for the routing model: returns a fixed reply or raises."""

    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.content


class StubCompleter:
    """Stands in for the downstream model call."""

    def __init__(self, reply="OK RESULT", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def __call__(self, model, messages):
        self.calls.append((model, messages))
        if self.error is not None:
            raise self.error
        return self.reply


def decision_json(model, reasoning="Stub reasoning."):
    return '{"model": "%s", "reasoning": "%s"}' % (model, reasoning)
