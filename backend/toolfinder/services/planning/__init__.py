"""Query planning: IntentState to an executable QueryPlan."""
