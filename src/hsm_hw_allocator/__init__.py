"""HSM hardware allocator.

Hardware-aware allocation of compute nodes between HSM groups: fetches and
normalizes node inventories, scores hardware scarcity and moves the fewest
nodes needed to give a group the requested processors, accelerators and
memory.
"""

__version__ = "0.1.0"
