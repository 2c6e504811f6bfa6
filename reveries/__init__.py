"""
Reveries research orchestration engine.

Routes a natural-language query through one of several multi-step research
strategies, driving interchangeable LLM providers behind a shared admission
controller, retry policy and circuit breaker.
"""

__version__ = "0.1.0"
