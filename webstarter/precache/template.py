"""
Service worker source generation.

The generated script embeds the manifest as a literal array and implements
the install / activate / fetch flow of the runtime installer. Rendering is
pure: the same settings and manifest always produce the same text.
"""

from __future__ import annotations

import json
import re
from typing import Any

from ..config.models import PrecacheSettings
from .manifest import CACHE_BUST_PARAM, Manifest

PRECACHE_VERSION = "precache-v1"

SERVICE_WORKER_TEMPLATE = """\
/**
 * Generated by webstarter. Do not edit: rebuild with
 * `python main.py generate-service-worker` instead.
 */

'use strict';

__IMPORT_SCRIPTS__
var precacheConfig = __PRECACHE_CONFIG__;
var cacheName = __PRECACHE_VERSION__ + '-' + __CACHE_ID__ + '-' +
  (self.registration ? self.registration.scope : '');
var cacheBustParam = __CACHE_BUST_PARAM__;
var directoryIndex = __DIRECTORY_INDEX__;
var navigateFallback = __NAVIGATE_FALLBACK__;
var ignoreUrlParametersMatching = __IGNORE_PATTERNS__.map(function(source) {
  return new RegExp(source);
});

function createCacheKey(servedPath, fingerprint) {
  var url = new URL(servedPath, self.location);
  url.searchParams.set(cacheBustParam, fingerprint);
  return url.toString();
}

var urlsToCacheKeys = new Map(precacheConfig.map(function(item) {
  var absoluteUrl = new URL(item[0], self.location).toString();
  return [absoluteUrl, createCacheKey(item[0], item[1])];
}));

function stripIgnoredUrlParameters(originalUrl) {
  var url = new URL(originalUrl);
  url.hash = '';
  var kept = [];
  url.searchParams.forEach(function(value, key) {
    var ignored = ignoreUrlParametersMatching.some(function(pattern) {
      return pattern.test(key);
    });
    if (!ignored) {
      kept.push([key, value]);
    }
  });
  url.search = '';
  kept.forEach(function(pair) {
    url.searchParams.append(pair[0], pair[1]);
  });
  return url.toString();
}

function lookupCacheKey(requestUrl) {
  var url = stripIgnoredUrlParameters(requestUrl);
  if (!urlsToCacheKeys.has(url) && directoryIndex && url.slice(-1) === '/') {
    url = url + directoryIndex;
  }
  return urlsToCacheKeys.get(url);
}

self.addEventListener('install', function(event) {
  event.waitUntil(
    caches.open(cacheName).then(function(cache) {
      return cache.keys().then(function(requests) {
        var stored = new Set(requests.map(function(request) {
          return request.url;
        }));
        var pending = [];
        urlsToCacheKeys.forEach(function(cacheKey, url) {
          if (stored.has(cacheKey)) {
            return;
          }
          pending.push(fetch(new Request(url, {credentials: 'same-origin', cache: 'reload'}))
            .then(function(response) {
              if (!response.ok) {
                throw new Error('Request for ' + url + ' returned status ' + response.status);
              }
              return cache.put(cacheKey, response);
            })
            .catch(function(error) {
              console.warn('[precache] Skipping ' + url + ': ' + error);
            }));
        });
        return Promise.all(pending);
      });
    }).then(function() {
      return self.skipWaiting();
    })
  );
});

self.addEventListener('activate', function(event) {
  var expected = new Set(urlsToCacheKeys.values());
  event.waitUntil(
    caches.open(cacheName).then(function(cache) {
      return cache.keys().then(function(requests) {
        return Promise.all(requests.map(function(request) {
          if (!expected.has(request.url)) {
            return cache.delete(request);
          }
        }));
      });
    }).then(function() {
      return self.clients.claim();
    })
  );
});

if (__HANDLE_FETCH__) {
  self.addEventListener('fetch', function(event) {
    if (event.request.method !== 'GET') {
      return;
    }
    var cacheKey = lookupCacheKey(event.request.url);
    if (!cacheKey && navigateFallback && event.request.mode === 'navigate') {
      cacheKey = urlsToCacheKeys.get(new URL(navigateFallback, self.location).toString());
    }
    if (!cacheKey) {
      return;
    }
    event.respondWith(
      caches.open(cacheName).then(function(cache) {
        return cache.match(cacheKey).then(function(response) {
          if (response) {
            return response;
          }
          throw new Error('Cache miss for ' + cacheKey);
        });
      }).catch(function(error) {
        console.warn('[precache] Falling back to network for ' + event.request.url + ': ' + error);
        return fetch(event.request);
      })
    );
  });
}
"""


def _js(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def render_service_worker(settings: PrecacheSettings, manifest: Manifest) -> str:
    """Render the service worker source for a manifest."""
    if settings.import_scripts:
        imports = "importScripts(\n" + ",\n".join(
            f"  {_js(url)}" for url in settings.import_scripts
        ) + "\n);\n"
    else:
        imports = ""

    config_literal = "[\n" + ",\n".join(
        f"  {_js(pair)}" for pair in manifest.as_pairs()
    ) + "\n]" if len(manifest) else "[]"

    replacements = {
        "__IMPORT_SCRIPTS__": imports,
        "__PRECACHE_CONFIG__": config_literal,
        "__PRECACHE_VERSION__": _js(PRECACHE_VERSION),
        "__CACHE_ID__": _js(settings.cache_id),
        "__CACHE_BUST_PARAM__": _js(CACHE_BUST_PARAM),
        "__DIRECTORY_INDEX__": _js(settings.directory_index),
        "__NAVIGATE_FALLBACK__": _js(settings.navigate_fallback),
        "__IGNORE_PATTERNS__": _js(list(settings.ignore_url_parameters_matching)),
        "__HANDLE_FETCH__": _js(settings.handle_fetch),
    }
    # Single pass: substituted values are not rescanned
    placeholders = re.compile("|".join(re.escape(name) for name in replacements))
    return placeholders.sub(lambda match: replacements[match.group(0)], SERVICE_WORKER_TEMPLATE)
