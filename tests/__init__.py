"""
picspecies Test Suite

Tests organized by:
- test_config.py: particle configuration validation
- test_parallel.py: communicator wrapper and collectives
- test_particles.py: particle data structures
- test_mesh.py: boxes, ownership and ghost-cell reductions
- test_pic_mover.py: CIC kernels, Boris push, boundaries
- test_species.py: species variants
- test_deposition.py: deposition sessions
- test_multi_species.py: registry and pass sequencing
- test_redistribute.py: particle redistribution
- test_diagnostics.py: boosted-frame slicing and trackers
"""
