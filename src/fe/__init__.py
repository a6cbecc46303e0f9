"""Q1 finite element collaborators: assembly, constraints, estimation, output."""
