"""Demo workload with deliberate CPU and memory hot spots for trying out the profiler."""