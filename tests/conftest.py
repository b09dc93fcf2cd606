# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Pytest configuration and shared fixtures for ctxindex tests.
"""

import hashlib
import json
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pytest

import ctxindex.config as ctx_config
from ctxindex.indexer import Indexer
from ctxindex.storage import ChunkStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def test_repo_path(temp_dir):
    """Create a temporary workspace with sample source files."""
    repo_path = temp_dir / "test_repo"
    repo_path.mkdir(parents=True, exist_ok=True)

    (repo_path / "main.py").write_text("""import os
from pathlib import Path


def hello_world():
    '''Say hello to the world.'''
    print("Hello, World!")


class Calculator:
    '''Simple calculator class.'''

    def add(self, a, b):
        '''Add two numbers.'''
        return a + b

    def subtract(self, a, b):
        '''Subtract b from a.'''
        return a - b


if __name__ == "__main__":
    hello_world()
""")

    (repo_path / "app.js").write_text("""import React from 'react';
import { useState } from "react";

function formatPrice(value) {
  if (value > 100) {
    return `$${value}`;
  }
  return String(value);
}

class Cart extends Base {
  constructor(items) {
    super();
    this.items = items;
  }

  total() {
    let sum = 0;
    for (const item of this.items) {
      sum += item.price;
    }
    return sum;
  }
}
""")

    lib = repo_path / "lib"
    lib.mkdir()
    (lib / "Greeter.java").write_text("""package lib;

import java.util.List;
import static java.lang.Math.max;

public class Greeter {
    private final String name;

    public Greeter(String name) {
        this.name = name;
    }

    public String greet(List<String> others) {
        if (others.isEmpty()) {
            return "Hello " + name;
        }
        return "Hello " + String.join(", ", others);
    }
}
""")

    (repo_path / "notes.txt").write_text("not indexed")

    deps = repo_path / "node_modules" / "dep"
    deps.mkdir(parents=True)
    (deps / "index.js").write_text("function vendored() { return 1; }")

    yield repo_path


@pytest.fixture
def chunk_store(temp_dir):
    """A chunk store persisting into the temp dir."""
    store = ChunkStore(temp_dir / ".test_index", flush_every=10)
    yield store
    store.close()


@pytest.fixture
def indexer(chunk_store, test_repo_path):
    """An indexer over the sample workspace with no inter-batch delay."""
    return Indexer(
        chunk_store,
        [test_repo_path],
        batch_size=2,
        batch_delay=0.0,
        workers=2,
    )


@pytest.fixture
def dummy_embed_fn():
    """Deterministic bag-of-words embedding function for testing."""
    dim = 64

    def embed_fn(texts):
        embeddings = np.zeros((len(texts), dim), dtype="float32")
        for i, text in enumerate(texts):
            for word in text.lower().split():
                digest = hashlib.sha256(word.encode("utf-8")).digest()
                embeddings[i, digest[0] % dim] += 1.0
        return embeddings

    return embed_fn


@pytest.fixture
def test_config_file(temp_dir, test_repo_path):
    """Create a temporary config file for testing."""
    config_path = temp_dir / "ctxindex.json"
    config_data = {
        "server": {"log_level": "DEBUG"},
        "workspace": {"name": "sample", "roots": [str(test_repo_path)]},
        "index": {
            "path": str(temp_dir / ".test_index"),
            "batch_size": 2,
            "batch_delay_seconds": 0,
            "initial_delay_seconds": 0,
            "workers": 2,
        },
        "retrieval": {"threshold": 0.01},
        "watch": {"enabled": False},
        "admin": {
            "enabled": True,
            "api_key": "secret",
            "allowed_ips": ["127.0.0.1", "testclient"],
        },
    }
    with open(config_path, "w") as f:
        json.dump(config_data, f, indent=2)

    yield config_path


@pytest.fixture
def test_config(test_config_file, monkeypatch):
    """Install a Config loaded from ``test_config_file`` as the global config."""
    cfg = ctx_config.Config(test_config_file)
    monkeypatch.setattr(ctx_config, "_config", cfg)
    return cfg
