"""Core compiler: schema catalog, relation resolution, planning and emission."""
