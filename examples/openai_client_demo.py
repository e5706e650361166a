#!/usr/bin/env python3
"""Example: Using the OpenAI SDK with a synapforge server.

Prerequisites:
    1. Install openai: pip install "synapforge[examples]"
    2. Start the server: synapforge serve
"""

try:
    from openai import OpenAI
except ImportError:
    print("Please install openai: pip install openai")
    exit(1)

# Connect to the local server
client = OpenAI(
    base_url="http://localhost:8000/v1",
    api_key="test",  # Any string works if auth is disabled
)

model = client.models.list().data[0].id
print(f"Serving: {model}")

print("=== Completion ===")
completion = client.completions.create(
    model=model,
    prompt="the quick brown fox",
    max_tokens=20,
    temperature=0.8,
    top_p=0.9,
    seed=42,
    # Extension fields understood by synapforge
    extra_body={"top_k": 40, "repeat_penalty": 1.1, "repeat_last_n": 64},
)
print(f"Response: {completion.choices[0].text!r} (finish_reason={completion.choices[0].finish_reason})")
print(f"Usage: {completion.usage}")

print("\n=== Chat ===")
response = client.chat.completions.create(
    model=model,
    messages=[
        {"role": "system", "content": "You are a helpful assistant."},
        {"role": "user", "content": "Hello!"},
    ],
    max_tokens=20,
)
print(f"Response: {response.choices[0].message.content!r}")

print("\n=== Embeddings ===")
embeddings = client.embeddings.create(model=model, input=["hello world", "lazy dog"])
print(f"Dimensions: {len(embeddings.data[0].embedding)}")
