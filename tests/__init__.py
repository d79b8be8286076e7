# AccountGuard Tests
