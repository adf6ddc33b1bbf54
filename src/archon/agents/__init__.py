"""
Agents.

- models.py: AgentConfig, PromptTemplate, execution context and response types
- executor.py: AgentExecutor, one agent end-to-end (retrieval, prompt, tool loop)
- manager.py: AgentManager, the roster and executor lifecycle
- master.py: the master agent and its generated delegation prompt
- templates.py: built-in specialist templates
"""
