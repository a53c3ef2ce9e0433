"""Engine components. Construct them through `study_scheduler.container.create_services`."""
