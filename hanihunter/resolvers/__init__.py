"""Resolvers that turn site links into downloadable videos."""