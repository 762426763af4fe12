"""
rulesync package - Concurrent Rule-List Mirror Refresh

Modules:
    atomicfile: Single-writer / multiple-reader replaceable file
    mirror: Location -> local mirror mapping and sources file loading
    fetcher: Conditional download of one item into its mirror
    state: Lock-guarded progress and error bookkeeping
    orchestrator: Refresh cycle over all items, plus the command line
"""

__version__ = "1.0.0"
