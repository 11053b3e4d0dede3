"""Rules engine and tiered solver for thin (1xN) and skinny (Nx2) chess."""
