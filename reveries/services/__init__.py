"""
Research engine services.

Provider access (``llm_client``, ``provider_gateway``, ``rate_limiter``),
routing (``research_orchestrator``, ``research_strategies``,
``classification_engine``, ``self_healing_system``), session state
(``cache``, ``research_graph``) and ``export_service``. Import from the
submodules directly.
"""
