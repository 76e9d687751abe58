"""
Insight Generation Engine

Derives risk predictions and bottleneck flags from project-tracking data:
- Deadline risk, burnout, velocity forecast, scope creep predictors
- Bottleneck detection (stuck reviews, stale tasks, dependency blocks)
- Model-written reasoning with deterministic template fallback

Scoring is deterministic; only reasoning prose may vary.
"""
