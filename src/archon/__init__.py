"""
Archon -- multi-agent orchestration over a retrieval-augmented knowledge base.

A registry of specialist agents (prompt template + model binding + retrieval
settings + tool permissions), an executor that runs one agent end-to-end,
and a master agent that delegates to the others through agent-call tools.

Usage:
    from archon.runtime import build_runtime

    runtime = build_runtime()
    await runtime.start()
    response = await runtime.manager.execute_agent("archon-master", "What do my notes say about X?")
    print(response.answer)
"""

__version__ = "0.1.0"
