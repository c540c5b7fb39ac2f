"""
Reshard phase engine: sequencer, watchdog-guarded remote step, fan-out
executor, convergence gate and escalation policy.
"""
